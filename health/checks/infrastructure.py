# ============================================================================
# INFRASTRUCTURE HEALTH CHECKS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Messaging and substrate checks
# PURPOSE: Event bus connectivity/backlog and execution substrate state
# CREATED: 17 OCT 2026
# ============================================================================
"""
Infrastructure Health Checks

- EventBusCheck (priority 20): event bus configured, connected, not saturated
- SubstrateCheck (priority 30): execution substrate present
"""

import logging

from health.core import (
    HealthCheckPlugin,
    HealthCheckResult,
)
from health.registry import register_check

logger = logging.getLogger(__name__)


# Global references (set by main app)
_event_bus = None
_substrate = None

# Fraction of capacity at which an in-memory queue counts as backed up
BACKLOG_WARN_RATIO = 0.8


def set_event_bus(bus):
    """Set event bus reference for health checks."""
    global _event_bus
    _event_bus = bus


def set_substrate(substrate):
    """Set execution substrate reference for health checks."""
    global _substrate
    _substrate = substrate


@register_check(category="infrastructure")
class EventBusCheck(HealthCheckPlugin):
    """
    Event bus health check.

    Service Bus: the queue client must be connected.
    In-memory: degraded when close to capacity (publishes will start failing).
    """

    name = "event_bus"
    timeout_seconds = 10.0

    async def check(self) -> HealthCheckResult:
        if _event_bus is None:
            return HealthCheckResult.unhealthy(
                message="Event bus not initialized",
            )

        stats = _event_bus.stats
        if not stats.get("durable"):
            depth = stats.get("depth", 0)
            capacity = stats.get("capacity") or 1
            if depth >= capacity * BACKLOG_WARN_RATIO:
                return HealthCheckResult.degraded(
                    message=f"Event queue backed up ({depth}/{capacity})",
                    **stats,
                )
            return HealthCheckResult.healthy(
                message="In-memory event bus (not durable across restarts)",
                **stats,
            )

        if not getattr(_event_bus, "is_connected", False):
            return HealthCheckResult.unhealthy(
                message="Service Bus client not connected",
                queue=stats.get("queue"),
            )

        return HealthCheckResult.healthy(
            message="Service Bus connected",
            **stats,
        )


@register_check(category="substrate")
class SubstrateCheck(HealthCheckPlugin):
    """Execution substrate present; reports stage process counts."""

    name = "substrate"
    timeout_seconds = 2.0

    async def check(self) -> HealthCheckResult:
        if _substrate is None:
            return HealthCheckResult.unhealthy(
                message="Execution substrate not initialized",
            )
        return HealthCheckResult.healthy(
            message="Execution substrate available",
            **_substrate.stats,
        )


__all__ = [
    "EventBusCheck",
    "SubstrateCheck",
    "set_event_bus",
    "set_substrate",
]
