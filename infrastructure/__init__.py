# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Execution substrate, naming, queues
# PURPOSE: Everything that touches processes, DNS or Azure
# CREATED: 14 OCT 2026
# ============================================================================
"""
Infrastructure module for the stage orchestrator.

Provides:
- ExecutionSubstrate / StageHandle: where stages run (abstract)
- LocalProcessSubstrate: reference substrate using local subprocesses
- DnsResolver / SubstrateResolver: one readiness attempt against an address
- ServiceBusQueue (infrastructure.service_bus): async Azure Service Bus
  queue access, used by messaging.ServiceBusEventBus

Usage:
    from infrastructure import LocalProcessSubstrate, SubstrateResolver

    substrate = LocalProcessSubstrate.from_env()
    resolver = SubstrateResolver(substrate)
"""

from infrastructure.substrate import ExecutionSubstrate, LaunchSpec, StageHandle
from infrastructure.local_process import LocalProcessSubstrate, LocalStageHandle
from infrastructure.resolver import DnsResolver, ProbeTarget, Resolver, SubstrateResolver

__all__ = [
    # Substrate
    'ExecutionSubstrate',
    'LaunchSpec',
    'StageHandle',
    'LocalProcessSubstrate',
    'LocalStageHandle',
    # Resolvers
    'DnsResolver',
    'ProbeTarget',
    'Resolver',
    'SubstrateResolver',
]
