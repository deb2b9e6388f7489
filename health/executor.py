# ============================================================================
# HEALTH CHECK EXECUTOR
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Parallel health check execution
# PURPOSE: Execute health checks with timeouts and aggregation
# CREATED: 17 OCT 2026
# ============================================================================
"""
Health Check Executor

Execution Strategy:
1. Group checks by category tier (startup, infrastructure, substrate, application)
2. Execute each tier sequentially, so a broken event bus shows up before
   the consumer that depends on it
3. Within each tier, execute checks in parallel with per-check timeouts
4. Aggregate with 'worst wins' semantics
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from health.core import (
    HealthStatus,
    HealthCheckResult,
    HealthCheckPlugin,
    AggregatedHealthResult,
)
from health.registry import HealthCheckRegistry, get_registry

logger = logging.getLogger(__name__)


class HealthCheckExecutor:
    """
    Executes health checks tier-by-tier, in parallel within a tier.
    """

    # Priority tiers for grouping parallel execution
    TIER_BOUNDARIES = [15, 25, 35, 100]

    def __init__(
        self,
        registry: Optional[HealthCheckRegistry] = None,
        overall_timeout: float = 30.0,
        max_parallel: int = 10,
    ):
        self.registry = registry or get_registry()
        self.overall_timeout = overall_timeout
        self.max_parallel = max_parallel

    async def execute_all(
        self,
        early_terminate: bool = False,
    ) -> AggregatedHealthResult:
        """
        Execute all registered health checks.

        Args:
            early_terminate: Stop after the first tier with an unhealthy result
        """
        start_time = time.monotonic()
        checks = self.registry.get_checks_by_priority()

        if not checks:
            return AggregatedHealthResult(
                status=HealthStatus.HEALTHY,
                checks={},
                total_duration_ms=0.0,
            )

        results: Dict[str, HealthCheckResult] = {}
        tiers = self._group_by_tier(checks)

        for _, tier_checks in sorted(tiers.items()):
            elapsed = time.monotonic() - start_time
            if elapsed >= self.overall_timeout:
                logger.warning(
                    f"Health check overall timeout ({self.overall_timeout}s) exceeded"
                )
                for check in tier_checks:
                    results[check.name] = HealthCheckResult.unhealthy(
                        "Skipped: overall timeout exceeded"
                    )
                continue

            tier_results = await self._execute_tier(
                tier_checks,
                remaining_timeout=self.overall_timeout - elapsed,
            )
            results.update(tier_results)

            if early_terminate and any(
                r.status == HealthStatus.UNHEALTHY for r in tier_results.values()
            ):
                logger.info("Early termination: unhealthy check detected")
                break

        total_duration_ms = (time.monotonic() - start_time) * 1000
        return AggregatedHealthResult(
            status=HealthStatus.aggregate([r.status for r in results.values()]),
            checks=results,
            total_duration_ms=total_duration_ms,
        )

    async def execute_required(self) -> AggregatedHealthResult:
        """Execute only checks required for /readyz, all in one tier."""
        start_time = time.monotonic()
        results = await self._execute_tier(
            self.registry.get_required_checks(),
            remaining_timeout=self.overall_timeout,
        )

        total_duration_ms = (time.monotonic() - start_time) * 1000
        return AggregatedHealthResult(
            status=HealthStatus.aggregate([r.status for r in results.values()]),
            checks=results,
            total_duration_ms=total_duration_ms,
        )

    async def execute_single(self, name: str) -> Optional[HealthCheckResult]:
        """Execute a single check by name."""
        check = self.registry.get(name)
        if check is None:
            return None
        return await self._execute_check(check)

    async def _execute_tier(
        self,
        checks: List[HealthCheckPlugin],
        remaining_timeout: float,
    ) -> Dict[str, HealthCheckResult]:
        """Execute a tier of checks in parallel."""
        if not checks:
            return {}

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def run_with_semaphore(check: HealthCheckPlugin) -> HealthCheckResult:
            async with semaphore:
                return await self._execute_check(check)

        tasks = {
            check.name: asyncio.create_task(run_with_semaphore(check))
            for check in checks
        }
        _, pending = await asyncio.wait(
            tasks.values(),
            timeout=remaining_timeout,
            return_when=asyncio.ALL_COMPLETED,
        )
        for task in pending:
            task.cancel()

        results = {}
        for check in checks:
            task = tasks[check.name]
            if task in pending:
                results[check.name] = HealthCheckResult.unhealthy(
                    f"Skipped: overall timeout ({remaining_timeout:.1f}s) exceeded"
                )
            else:
                results[check.name] = task.result()
        return results

    async def _execute_check(self, check: HealthCheckPlugin) -> HealthCheckResult:
        """Execute a single check with timeout; never raises."""
        start_time = time.monotonic()

        try:
            result = await asyncio.wait_for(check.check(), timeout=check.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Health check {check.name} timed out after {check.timeout_seconds}s")
            result = HealthCheckResult.unhealthy(f"Timeout after {check.timeout_seconds}s")
        except Exception as e:
            logger.error(f"Health check {check.name} failed: {e}")
            result = HealthCheckResult.from_exception(e)

        result.duration_ms = (time.monotonic() - start_time) * 1000
        logger.debug(f"Health check {check.name}: {result.status.value} ({result.duration_ms:.1f}ms)")
        return result

    def _group_by_tier(
        self,
        checks: List[HealthCheckPlugin],
    ) -> Dict[int, List[HealthCheckPlugin]]:
        tiers: Dict[int, List[HealthCheckPlugin]] = {}
        for check in checks:
            tier = next(
                (b for b in self.TIER_BOUNDARIES if check.priority <= b),
                self.TIER_BOUNDARIES[-1],
            )
            tiers.setdefault(tier, []).append(check)
        return tiers


__all__ = [
    "HealthCheckExecutor",
]
