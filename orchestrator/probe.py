# ============================================================================
# READINESS PROBE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Poll a logical address until it resolves
# PURPOSE: Gate stage launches on datagram peers that send no ready signal
# CREATED: 14 OCT 2026
# ============================================================================
"""
Readiness Probe

Polls a target on a fixed cadence until it resolves, then waits a grace
period so the peer can bind its socket before traffic arrives.

Cadence:
    Each attempt owns one interval-long slot. The attempt itself is bounded
    by the interval, and a failed attempt sleeps out the rest of its slot.
    A bounded probe therefore gives up after max_attempts * interval plus
    scheduling jitter.

Unbounded probes (max_attempts=None) never give up on their own; the caller
enforces a deadline by cancelling the task.

The probe only observes. It never changes task state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from core.contracts import ProbeOutcome
from infrastructure.resolver import DnsResolver, ProbeTarget, Resolver

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of one wait_ready call."""
    outcome: ProbeOutcome
    target: str
    attempts: int
    elapsed: float
    last_error: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.outcome == ProbeOutcome.READY


class ReadinessProbe:
    """
    Polls resolvers on a fixed cadence.

    Args:
        resolver: Strategy for one attempt (defaults to DNS)
    """

    def __init__(self, resolver: Optional[Resolver] = None):
        self.resolver = resolver or DnsResolver()

    async def _attempt(self, target: ProbeTarget, interval: float) -> Tuple[bool, Optional[str]]:
        """
        One bounded attempt. Returns (reachable, error).

        The attempt runs as its own task under asyncio.wait rather than
        wait_for, so cancelling the caller always propagates even when the
        attempt finishes in the same loop iteration.
        """
        attempt = asyncio.ensure_future(self.resolver.resolve(target))
        try:
            done, _ = await asyncio.wait({attempt}, timeout=interval)
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        if not done:
            attempt.cancel()
            return False, f"attempt exceeded {interval}s"
        try:
            ok = attempt.result()
        except OSError as e:
            return False, f"{type(e).__name__}: {e}"
        if not ok:
            return False, "not resolvable"
        return True, None

    async def wait_ready(
        self,
        target: ProbeTarget,
        interval: float,
        max_attempts: Optional[int] = None,
        grace_seconds: float = 0.0,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> ProbeResult:
        """
        Poll target until it resolves or attempts run out.

        Args:
            target: Address to poll
            interval: Seconds per attempt slot
            max_attempts: Attempt limit, None for unbounded
            grace_seconds: Extra wait after success
            on_attempt: Called with the attempt number after each attempt

        Returns:
            ProbeResult with outcome READY or TIMED_OUT
        """
        started = time.monotonic()
        attempt = 0
        last_error: Optional[str] = None

        while max_attempts is None or attempt < max_attempts:
            attempt += 1
            slot_start = time.monotonic()
            ok, last_error = await self._attempt(target, interval)
            if on_attempt is not None:
                on_attempt(attempt)

            if ok:
                logger.info(f"{target} resolvable after {attempt} attempt(s)")
                if grace_seconds > 0:
                    await asyncio.sleep(grace_seconds)
                return ProbeResult(
                    outcome=ProbeOutcome.READY,
                    target=str(target),
                    attempts=attempt,
                    elapsed=time.monotonic() - started,
                )

            logger.debug(f"waiting for {target} (attempt {attempt}: {last_error})")
            remaining = interval - (time.monotonic() - slot_start)
            if remaining > 0:
                await asyncio.sleep(remaining)

        elapsed = time.monotonic() - started
        logger.warning(f"{target} not resolvable after {attempt} attempts ({elapsed:.1f}s)")
        return ProbeResult(
            outcome=ProbeOutcome.TIMED_OUT,
            target=str(target),
            attempts=attempt,
            elapsed=elapsed,
            last_error=last_error,
        )

    async def wait_all_ready(
        self,
        targets: List[ProbeTarget],
        interval: float,
        max_attempts: Optional[int] = None,
        grace_seconds: float = 0.0,
        on_attempt: Optional[Callable[[int], None]] = None,
    ) -> List[ProbeResult]:
        """
        Probe several targets concurrently.

        Stops at the first TIMED_OUT result (remaining probes are cancelled).
        The grace period is applied once, after every target is ready.
        """
        if not targets:
            return []

        probes = [
            asyncio.create_task(
                self.wait_ready(t, interval, max_attempts, 0.0, on_attempt),
                name=f"probe-{t.host}",
            )
            for t in targets
        ]
        results: List[ProbeResult] = []
        try:
            for next_done in asyncio.as_completed(probes):
                result = await next_done
                results.append(result)
                if not result.ready:
                    return results
        finally:
            for probe in probes:
                if not probe.done():
                    probe.cancel()
            await asyncio.gather(*probes, return_exceptions=True)

        if grace_seconds > 0:
            await asyncio.sleep(grace_seconds)
        return results


__all__ = ["ProbeResult", "ReadinessProbe", "ProbeTarget"]
