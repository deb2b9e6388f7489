# ============================================================================
# STARTUP HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Startup health checks
# PURPOSE: Basic process and configuration checks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Startup Health Checks

Basic checks that run first (priority 10):
- ProcessCheck: Always healthy if process is running
- ConfigCheck: Environment-derived configuration parses and its paths exist
"""

import os
import platform
import sys
import logging
from pathlib import Path

from core.config import ProbeDefaults, SchedulerDefaults, TriggerDefaults
from health.core import (
    HealthCheckPlugin,
    HealthCheckResult,
)
from health.registry import register_check
from messaging.config import EventBusConfig

logger = logging.getLogger(__name__)


@register_check(category="startup")
class ProcessCheck(HealthCheckPlugin):
    """Always healthy if the check runs (proves the event loop is responsive)."""

    name = "process"
    timeout_seconds = 1.0

    async def check(self) -> HealthCheckResult:
        return HealthCheckResult.healthy(
            message="Process running",
            python_version=sys.version,
            platform=platform.platform(),
            pid=os.getpid(),
        )


@register_check(category="startup")
class ConfigCheck(HealthCheckPlugin):
    """
    Configuration health check.

    Re-reads configuration from the environment. Values that do not parse
    are unhealthy; a missing DAG directory or trigger file only degrades,
    since submissions with inline definitions still work.
    """

    name = "config"
    timeout_seconds = 1.0

    async def check(self) -> HealthCheckResult:
        try:
            probe = ProbeDefaults.from_env()
            scheduler = SchedulerDefaults.from_env()
            triggers = TriggerDefaults.from_env()
            bus = EventBusConfig.from_env()
        except ValueError as e:
            return HealthCheckResult.unhealthy(
                message=f"Invalid configuration: {e}",
            )

        details = {
            "probe_interval_seconds": probe.interval_seconds,
            "probe_max_attempts": probe.max_attempts,
            "dependency_gate": scheduler.dependency_gate.value,
            "event_bus_backend": bus.backend,
            "dags_dir": triggers.dags_dir,
            "triggers_file": triggers.triggers_file,
        }

        missing = [
            path for path in (triggers.dags_dir, triggers.triggers_file)
            if not Path(path).exists()
        ]
        if missing:
            return HealthCheckResult.degraded(
                message=f"Configured paths not found: {', '.join(missing)}",
                **details,
            )

        return HealthCheckResult.healthy(message="Configuration valid", **details)


__all__ = [
    "ProcessCheck",
    "ConfigCheck",
]
