# ============================================================================
# HEALTH CHECK REGISTRY
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Health check plugin registration
# PURPOSE: Register and discover health check plugins
# CREATED: 17 OCT 2026
# ============================================================================
"""
Health Check Registry

Checks register themselves with @register_check when health.checks is
imported; main.py marks the registry initialized once services are wired.

Usage:
    registry = get_registry()
    for check in registry.get_checks_by_priority():
        ...
"""

import logging
from typing import Dict, List, Optional, Type

from health.core import (
    HealthCheckPlugin,
    HealthCheckCategory,
)

logger = logging.getLogger(__name__)


class HealthCheckRegistry:
    """Checks keyed by name. The executor asks for them in tier order."""

    def __init__(self):
        self._checks: Dict[str, HealthCheckPlugin] = {}
        self._initialized = False

    def register(self, check: HealthCheckPlugin) -> None:
        """Add a check; a later check with the same name replaces it."""
        if check.name in self._checks:
            logger.warning(f"Replacing health check {check.name}")
        self._checks[check.name] = check
        logger.debug(f"Health check {check.name}: tier {check.category.value}, priority {check.priority}")

    def get(self, name: str) -> Optional[HealthCheckPlugin]:
        return self._checks.get(name)

    def get_checks_by_priority(self) -> List[HealthCheckPlugin]:
        """Startup tier first, application tier last."""
        return sorted(self._checks.values(), key=lambda c: c.priority)

    def get_required_checks(self) -> List[HealthCheckPlugin]:
        """Checks that gate /readyz."""
        return [c for c in self.get_checks_by_priority() if c.required_for_ready]

    @property
    def is_initialized(self) -> bool:
        """False until main.py has wired the scheduler, bus and consumer."""
        return self._initialized

    def mark_initialized(self) -> None:
        self._initialized = True


# ============================================================================
# GLOBAL REGISTRY & DECORATOR
# ============================================================================

_registry: Optional[HealthCheckRegistry] = None


def get_registry() -> HealthCheckRegistry:
    global _registry
    if _registry is None:
        _registry = HealthCheckRegistry()
    return _registry


def register_check(
    category: Optional[str] = None,
    priority: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    required_for_ready: Optional[bool] = None,
):
    """
    Class decorator: apply overrides, instantiate, register globally.

    Example:
        @register_check(category="application", required_for_ready=False)
        class DefinitionsCheck(HealthCheckPlugin):
            name = "definitions"
    """
    def decorator(cls: Type[HealthCheckPlugin]) -> Type[HealthCheckPlugin]:
        if category is not None:
            cls.category = HealthCheckCategory(category)
        cls.priority = priority if priority is not None else cls.category.default_priority
        if timeout_seconds is not None:
            cls.timeout_seconds = timeout_seconds
        if required_for_ready is not None:
            cls.required_for_ready = required_for_ready
        get_registry().register(cls())
        return cls

    return decorator


__all__ = [
    "HealthCheckRegistry",
    "get_registry",
    "register_check",
]
