# ============================================================================
# TASK RUNNER
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Drive one task from probe to launch to readiness
# PURPOSE: Probe dependencies, launch the stage, confirm it came up
# CREATED: 15 OCT 2026
# ============================================================================
"""
Task Runner

Runs one task of one instance:

    1. Probe every dependency address concurrently (PROBING)
    2. Launch through the execution substrate (RUNNING)
    3. Watch the startup window for an immediate non-zero exit
    4. Probe the task's own address if it exposes ports (READY)

Every state change goes through the transition callback supplied by the
scheduler; the runner never touches instance state directly. Failures are
local to this task: they end in FAILED with a reason and never propagate
to siblings.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from core.contracts import TaskState
from core.errors import ReadinessTimeout, TaskStartError
from core.logging import log_checkpoint
from core.models import TaskDefinition
from infrastructure.resolver import ProbeTarget
from infrastructure.substrate import ExecutionSubstrate, LaunchSpec, StageHandle
from orchestrator.probe import ReadinessProbe

logger = logging.getLogger(__name__)


TransitionFn = Callable[..., None]


@dataclass
class RunContext:
    """Everything the runner needs for one task."""
    instance_id: str
    task: TaskDefinition
    launch: LaunchSpec
    transition: TransitionFn
    dependencies: List[ProbeTarget] = field(default_factory=list)
    self_target: Optional[ProbeTarget] = None
    on_attempt: Optional[Callable[[int], None]] = None


@dataclass
class RunResult:
    state: TaskState
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    handle: Optional[StageHandle] = None

    @property
    def ready(self) -> bool:
        return self.state == TaskState.READY


class TaskRunner:
    """
    Executes a single task.

    Args:
        substrate: Where the stage is launched
        probe: Readiness probe (resolver decides what "resolvable" means)
    """

    def __init__(self, substrate: ExecutionSubstrate, probe: ReadinessProbe):
        self.substrate = substrate
        self.probe = probe

    async def run(self, ctx: RunContext) -> RunResult:
        """
        Run the task to READY or FAILED.

        Cancellation propagates (asyncio.CancelledError) so the scheduler
        can record it; in-flight probes are cancelled with this coroutine.
        """
        readiness = ctx.task.readiness

        # 1. Dependency readiness
        if ctx.dependencies:
            ctx.transition(TaskState.PROBING)
            try:
                await self._probe_dependencies(ctx)
            except ReadinessTimeout as e:
                reason = f"readiness timeout: {e}"
                ctx.transition(TaskState.FAILED, reason=reason)
                return RunResult(TaskState.FAILED, reason=reason)

        # 2. Launch
        try:
            handle = await self.substrate.launch(ctx.launch)
        except TaskStartError as e:
            reason = f"start failed: {e}"
            ctx.transition(TaskState.FAILED, reason=reason, exit_code=e.exit_code)
            return RunResult(TaskState.FAILED, reason=reason, exit_code=e.exit_code)

        ctx.transition(TaskState.RUNNING)
        log_checkpoint("task_started", {"address": ctx.launch.address})

        # 3. Startup window
        exit_code = await handle.wait(ctx.task.startup_window_seconds)
        if exit_code is not None and exit_code != 0:
            reason = f"exited with code {exit_code} during startup"
            ctx.transition(TaskState.FAILED, reason=reason, exit_code=exit_code)
            return RunResult(TaskState.FAILED, reason=reason, exit_code=exit_code, handle=handle)

        # 4. Own readiness
        if ctx.self_target is not None:
            result = await self.probe.wait_ready(
                ctx.self_target,
                interval=readiness.interval_seconds,
                max_attempts=readiness.max_attempts,
                grace_seconds=0.0,
            )
            if not result.ready:
                reason = (
                    f"readiness timeout: own address {result.target} not resolvable "
                    f"after {result.attempts} attempts"
                )
                ctx.transition(TaskState.FAILED, reason=reason)
                return RunResult(TaskState.FAILED, reason=reason, handle=handle)

        ctx.transition(TaskState.READY, exit_code=exit_code)
        log_checkpoint("task_ready")
        return RunResult(TaskState.READY, exit_code=exit_code, handle=handle)

    async def _probe_dependencies(self, ctx: RunContext) -> None:
        """Raises ReadinessTimeout on the first dependency that never resolves."""
        readiness = ctx.task.readiness
        logger.info(
            f"Probing {len(ctx.dependencies)} dependency address(es): "
            f"{', '.join(str(t) for t in ctx.dependencies)}"
        )
        results = await self.probe.wait_all_ready(
            ctx.dependencies,
            interval=readiness.interval_seconds,
            max_attempts=readiness.max_attempts,
            grace_seconds=readiness.grace_seconds,
            on_attempt=ctx.on_attempt,
        )
        for result in results:
            if not result.ready:
                raise ReadinessTimeout(result.target, result.attempts, result.elapsed)


__all__ = ["RunContext", "RunResult", "TaskRunner"]
