# ============================================================================
# HEALTH CHECK CORE TYPES
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Base classes for health checks
# PURPOSE: Health check plugin interfaces and result types
# CREATED: 17 OCT 2026
# ============================================================================
"""
Health Check Core Types

Status Hierarchy (worst wins):
- healthy: All systems operational
- degraded: Operational with warnings (e.g. a DAG file failed to load)
- unhealthy: Cannot accept triggers or submissions

Categories (execution order by priority):
1. Startup (10): Process and configuration
2. Infrastructure (20): Event bus
3. Substrate (30): Where stages run
4. Application (40): Scheduler, definitions, trigger consumer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def aggregate(cls, statuses: List["HealthStatus"]) -> "HealthStatus":
        """Worst status wins; no checks counts as healthy."""
        order = [cls.HEALTHY, cls.DEGRADED, cls.UNHEALTHY]
        return max(statuses, key=order.index, default=cls.HEALTHY)


class HealthCheckCategory(str, Enum):
    """Tiers, run in the order listed."""
    STARTUP = "startup"
    INFRASTRUCTURE = "infrastructure"
    SUBSTRATE = "substrate"
    APPLICATION = "application"

    @property
    def default_priority(self) -> int:
        return 10 * (list(HealthCheckCategory).index(self) + 1)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HealthCheckResult:
    """Outcome of one check. `details` is passed through to the JSON body."""
    status: HealthStatus
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    @classmethod
    def healthy(cls, message: Optional[str] = None, **details) -> "HealthCheckResult":
        return cls(HealthStatus.HEALTHY, message, details)

    @classmethod
    def degraded(cls, message: str, **details) -> "HealthCheckResult":
        return cls(HealthStatus.DEGRADED, message, details)

    @classmethod
    def unhealthy(cls, message: str, **details) -> "HealthCheckResult":
        return cls(HealthStatus.UNHEALTHY, message, details)

    @classmethod
    def from_exception(cls, e: Exception) -> "HealthCheckResult":
        return cls.unhealthy(str(e), exception_type=type(e).__name__)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": self.status.value, "duration_ms": round(self.duration_ms, 2)}
        if self.message:
            body["message"] = self.message
        if self.details:
            body["details"] = self.details
        return body


@dataclass
class AggregatedHealthResult:
    status: HealthStatus
    checks: Dict[str, HealthCheckResult]
    total_duration_ms: float
    checked_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
            "total_duration_ms": round(self.total_duration_ms, 2),
            "checked_at": self.checked_at.isoformat(),
        }


class HealthCheckPlugin(ABC):
    """
    Base class for health checks.

    Subclasses set `name` and implement check(). The @register_check
    decorator fills in category, priority and readiness overrides.

    Example:
        @register_check(category="infrastructure")
        class EventBusCheck(HealthCheckPlugin):
            name = "event_bus"
            timeout_seconds = 5.0

            async def check(self) -> HealthCheckResult:
                if _event_bus is None:
                    return HealthCheckResult.unhealthy("Event bus not configured")
                return HealthCheckResult.healthy(**_event_bus.stats)
    """

    name: str = "unnamed"
    category: HealthCheckCategory = HealthCheckCategory.APPLICATION
    priority: int = 40
    timeout_seconds: float = 10.0
    required_for_ready: bool = True

    @abstractmethod
    async def check(self) -> HealthCheckResult:
        ...
