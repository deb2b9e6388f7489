# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 12 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the stage orchestrator.
"""

from core.config.defaults import (
    ProbeDefaults,
    SchedulerDefaults,
    MonitorDefaults,
    TriggerDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "ProbeDefaults",
    "SchedulerDefaults",
    "MonitorDefaults",
    "TriggerDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
