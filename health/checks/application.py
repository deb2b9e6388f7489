# ============================================================================
# APPLICATION HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Application state checks
# PURPOSE: Scheduler, DAG definitions and trigger consumer availability
# CREATED: 17 OCT 2026
# ============================================================================
"""
Application Health Checks

Application-level checks (priority 40):
- SchedulerCheck: DAG scheduler started
- DefinitionsCheck: DAG definitions loaded without errors
- TriggerConsumerCheck: Event consumer loop running
"""

import logging

from health.core import (
    HealthCheckPlugin,
    HealthCheckResult,
)
from health.registry import register_check

logger = logging.getLogger(__name__)


# Global references (set by main app)
_scheduler = None
_definition_service = None
_trigger_consumer = None


def set_scheduler(scheduler):
    """Set scheduler reference for health checks."""
    global _scheduler
    _scheduler = scheduler


def set_definition_service(service):
    """Set definition service reference for health checks."""
    global _definition_service
    _definition_service = service


def set_trigger_consumer(consumer):
    """Set trigger consumer reference for health checks."""
    global _trigger_consumer
    _trigger_consumer = consumer


@register_check(category="application")
class SchedulerCheck(HealthCheckPlugin):
    """Verifies the DAG scheduler is started."""

    name = "scheduler"
    timeout_seconds = 2.0
    required_for_ready = True

    async def check(self) -> HealthCheckResult:
        if _scheduler is None:
            return HealthCheckResult.unhealthy(
                message="Scheduler not initialized",
            )

        stats = _scheduler.stats
        details = {
            "dependency_gate": stats.get("dependency_gate"),
            "uptime_seconds": stats.get("uptime_seconds"),
            "active_instances": stats.get("active_instances", 0),
            "submitted": stats.get("submitted", 0),
            "rejected": stats.get("rejected", 0),
            "failed": stats.get("failed", 0),
        }

        if not _scheduler.is_running:
            return HealthCheckResult.unhealthy(
                message="Scheduler not running",
                **details,
            )

        return HealthCheckResult.healthy(
            message=f"Scheduler running ({details['active_instances']} active instances)",
            **details,
        )


@register_check(category="application")
class DefinitionsCheck(HealthCheckPlugin):
    """
    DAG definitions health check.

    Degraded when nothing is loaded or some files were rejected; the
    orchestrator still accepts inline definitions.
    """

    name = "definitions"
    timeout_seconds = 2.0
    required_for_ready = False

    async def check(self) -> HealthCheckResult:
        if _definition_service is None:
            return HealthCheckResult.unhealthy(
                message="Definition service not initialized",
            )

        dags = _definition_service.list_all()
        errors = dict(_definition_service.load_errors)
        details = {
            "total": len(dags),
            "dag_ids": [d.dag_id for d in dags],
            "dags_dir": str(_definition_service.dags_dir),
        }

        if errors:
            return HealthCheckResult.degraded(
                message=f"{len(errors)} DAG files failed to load",
                errors=errors,
                **details,
            )
        if not dags:
            return HealthCheckResult.degraded(
                message="No DAGs loaded",
                hint="Check DAGS_DIR for YAML definitions",
                **details,
            )

        return HealthCheckResult.healthy(
            message=f"{len(dags)} DAGs loaded",
            **details,
        )


@register_check(category="application")
class TriggerConsumerCheck(HealthCheckPlugin):
    """Verifies the event consumer loop is running."""

    name = "trigger_consumer"
    timeout_seconds = 2.0
    required_for_ready = True

    async def check(self) -> HealthCheckResult:
        if _trigger_consumer is None:
            return HealthCheckResult.unhealthy(
                message="Trigger consumer not initialized",
            )

        stats = _trigger_consumer.stats
        if not _trigger_consumer.is_running:
            return HealthCheckResult.unhealthy(
                message="Trigger consumer loop not running",
                started_at=stats.get("started_at"),
            )

        return HealthCheckResult.healthy(
            message="Trigger consumer running",
            started_at=stats.get("started_at"),
            matcher=stats.get("matcher"),
        )


__all__ = [
    "SchedulerCheck",
    "DefinitionsCheck",
    "TriggerConsumerCheck",
    "set_scheduler",
    "set_definition_service",
    "set_trigger_consumer",
]
