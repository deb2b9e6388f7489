# ============================================================================
# NAME RESOLVERS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Readiness check strategies
# PURPOSE: Answer "is this logical address reachable yet?" for probes
# CREATED: 14 OCT 2026
# ============================================================================
"""
Name Resolvers

A resolver performs ONE readiness attempt against a ProbeTarget and
returns True/False (or raises OSError, which the probe counts as False).

- DnsResolver: getaddrinfo on the event loop's executor; TCP targets
  additionally require a successful connect
- SubstrateResolver: asks the execution substrate's name table first,
  falling back to DNS for names the substrate does not manage

Datagram stages never acknowledge anything, so for UDP the best available
signal is that the name resolves.
"""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from core.contracts import Protocol
from infrastructure.substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeTarget:
    """What a readiness probe polls."""
    host: str
    port: Optional[int] = None
    protocol: Protocol = Protocol.UDP
    scope: Optional[str] = None   # instance id for substrate-scoped names

    def __str__(self) -> str:
        if self.port is None:
            return self.host
        return f"{self.host}:{self.port}/{self.protocol.value}"


class Resolver(ABC):
    """One readiness attempt."""

    @abstractmethod
    async def resolve(self, target: ProbeTarget) -> bool:
        """True if target is reachable now."""


class DnsResolver(Resolver):
    """Resolve through the system resolver (and connect, for TCP)."""

    async def resolve(self, target: ProbeTarget) -> bool:
        loop = asyncio.get_running_loop()
        sock_type = socket.SOCK_STREAM if target.protocol == Protocol.TCP else socket.SOCK_DGRAM
        infos = await loop.getaddrinfo(target.host, target.port, type=sock_type)
        if not infos:
            return False

        if target.protocol == Protocol.TCP and target.port is not None:
            reader, writer = await asyncio.open_connection(target.host, target.port)
            writer.close()
            await writer.wait_closed()
        return True


class SubstrateResolver(Resolver):
    """
    Resolve through the substrate's per-instance name table.

    Names the substrate does not manage go to the fallback resolver.
    """

    def __init__(self, substrate: ExecutionSubstrate, fallback: Optional[Resolver] = None):
        self.substrate = substrate
        self.fallback = fallback or DnsResolver()

    async def resolve(self, target: ProbeTarget) -> bool:
        if target.scope is not None:
            managed = await self.substrate.lookup(target.scope, target.host)
            if managed is not None:
                return managed
        return await self.fallback.resolve(target)


__all__ = ["ProbeTarget", "Resolver", "DnsResolver", "SubstrateResolver"]
