# ============================================================================
# HEALTH CHECK MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Health check plugin system
# PURPOSE: Liveness/readiness probes and component health
# CREATED: 17 OCT 2026
# ============================================================================
"""
Health Check Module

Plugin-based health checks for the stage orchestrator:
- /livez: Process alive (instant)
- /readyz: Ready to accept triggers and submissions
- /health: Every check, grouped by category

Usage:
    import health.checks  # registers the built-in checks
    from health import health_router, get_registry

    app.include_router(health_router)
    get_registry().mark_initialized()
"""

from health.core import (
    HealthStatus,
    HealthCheckResult,
    HealthCheckPlugin,
    HealthCheckCategory,
)
from health.registry import (
    HealthCheckRegistry,
    register_check,
    get_registry,
)
from health.executor import HealthCheckExecutor
from health.router import health_router

__all__ = [
    # Core types
    "HealthStatus",
    "HealthCheckResult",
    "HealthCheckPlugin",
    "HealthCheckCategory",
    # Registry
    "HealthCheckRegistry",
    "register_check",
    "get_registry",
    # Executor
    "HealthCheckExecutor",
    # Router
    "health_router",
]
