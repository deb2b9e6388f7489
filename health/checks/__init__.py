# ============================================================================
# HEALTH CHECK PLUGINS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Health check implementations
# PURPOSE: Specific health checks for stage orchestrator components
# CREATED: 17 OCT 2026
# ============================================================================
"""
Health Check Plugins

Startup Checks (priority 10):
- process: Basic process health (always healthy if running)
- config: Environment configuration parses, configured paths exist

Infrastructure Checks (priority 20):
- event_bus: Event bus connected and not backed up

Substrate Checks (priority 30):
- substrate: Execution substrate present, stage counts

Application Checks (priority 40):
- scheduler: DAG scheduler running
- definitions: DAG definitions loaded
- trigger_consumer: Event consumer loop running

Import this module to register all checks:
    import health.checks
"""

# Import all check modules to trigger registration
from health.checks.startup import ProcessCheck, ConfigCheck
from health.checks.infrastructure import (
    EventBusCheck,
    SubstrateCheck,
    set_event_bus,
    set_substrate,
)
from health.checks.application import (
    SchedulerCheck,
    DefinitionsCheck,
    TriggerConsumerCheck,
    set_scheduler,
    set_definition_service,
    set_trigger_consumer,
)

__all__ = [
    # Startup
    "ProcessCheck",
    "ConfigCheck",
    # Infrastructure / substrate
    "EventBusCheck",
    "SubstrateCheck",
    "set_event_bus",
    "set_substrate",
    # Application
    "SchedulerCheck",
    "DefinitionsCheck",
    "TriggerConsumerCheck",
    "set_scheduler",
    "set_definition_service",
    "set_trigger_consumer",
]
