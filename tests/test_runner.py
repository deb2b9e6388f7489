# ============================================================================
# TASK RUNNER TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - Single-task probe / launch / readiness sequence
# PURPOSE: Verify the transitions a runner reports for each outcome
# CREATED: 18 OCT 2026
# ============================================================================
"""
Task Runner Tests

The runner reports every state change through the transition callback;
these tests record the callback's calls instead of using a scheduler.

Run with:
    pytest tests/test_runner.py -v
"""

import asyncio
from typing import List, Optional, Tuple

from core.contracts import TaskState
from core.models import TaskDefinition
from infrastructure.resolver import ProbeTarget, SubstrateResolver
from infrastructure.substrate import LaunchSpec
from orchestrator.probe import ReadinessProbe
from orchestrator.runner import RunContext, TaskRunner


# ============================================================================
# FIXTURES
# ============================================================================

class Recorder:
    def __init__(self):
        self.calls: List[Tuple[TaskState, Optional[str], Optional[int]]] = []

    def __call__(self, state: TaskState, reason: Optional[str] = None, exit_code: Optional[int] = None):
        self.calls.append((state, reason, exit_code))

    @property
    def states(self) -> List[TaskState]:
        return [call[0] for call in self.calls]


def _context(task_doc, recorder, dependencies=None, with_self_target=True):
    task = TaskDefinition.model_validate(task_doc)
    launch = LaunchSpec(
        instance_id="inst-1",
        task=task.name,
        address=task.address,
        argv=tuple(task.command),
        ports=tuple(p.port for p in task.ports),
    )
    self_target = None
    if with_self_target and task.ports:
        self_target = ProbeTarget(task.address, port=task.ports[0].port, scope="inst-1")
    return RunContext(
        instance_id="inst-1",
        task=task,
        launch=launch,
        transition=recorder,
        dependencies=[ProbeTarget(dep, scope="inst-1") for dep in (dependencies or [])],
        self_target=self_target,
    )


def _run(substrate, ctx, prepare=("a", "b")):
    async def run():
        await substrate.prepare("inst-1", list(prepare))
        runner = TaskRunner(substrate, ReadinessProbe(SubstrateResolver(substrate)))
        return await runner.run(ctx)
    return asyncio.run(run())


# ============================================================================
# OUTCOMES
# ============================================================================

class TestTaskRunner:

    def test_root_task_with_port_becomes_ready(self, substrate, task):
        recorder = Recorder()
        result = _run(substrate, _context(task("a", port=8888), recorder))

        assert result.ready
        assert recorder.states == [TaskState.RUNNING, TaskState.READY]
        assert substrate.launched_tasks == ["a"]

    def test_task_without_ports_ready_after_startup_window(self, substrate, task):
        recorder = Recorder()
        result = _run(substrate, _context(task("a", startup_window_seconds=0.02), recorder))
        assert result.ready
        assert recorder.states == [TaskState.RUNNING, TaskState.READY]

    def test_launch_failure(self, substrate, task):
        substrate.fail_launch.add("a")
        recorder = Recorder()
        result = _run(substrate, _context(task("a"), recorder))

        assert result.state == TaskState.FAILED
        assert recorder.states == [TaskState.FAILED]
        assert recorder.calls[0][1].startswith("start failed: Command not found")

    def test_nonzero_exit_during_startup(self, substrate, task):
        substrate.exit_codes["a"] = 3
        recorder = Recorder()
        result = _run(substrate, _context(task("a", startup_window_seconds=0.05), recorder))

        assert result.state == TaskState.FAILED
        assert result.exit_code == 3
        assert recorder.calls[-1] == (TaskState.FAILED, "exited with code 3 during startup", 3)

    def test_clean_exit_during_startup_is_not_a_failure(self, substrate, task):
        substrate.exit_codes["a"] = 0
        recorder = Recorder()
        result = _run(substrate, _context(task("a", startup_window_seconds=0.05), recorder))
        assert result.ready
        assert result.exit_code == 0

    def test_dependency_never_resolves(self, substrate, task):
        recorder = Recorder()
        ctx = _context(task("b", ["a"]), recorder, dependencies=["a"])
        result = _run(substrate, ctx)

        assert result.state == TaskState.FAILED
        assert recorder.states == [TaskState.PROBING, TaskState.FAILED]
        assert recorder.calls[-1][1].startswith("readiness timeout:")
        assert substrate.launches == []

    def test_dependency_resolves_then_launch(self, substrate, task):
        recorder = Recorder()
        ctx = _context(task("b", ["a"]), recorder, dependencies=["a"])

        async def run():
            await substrate.prepare("inst-1", ["a", "b"])
            await substrate.launch(LaunchSpec("inst-1", "a", "a", ("a",)))
            runner = TaskRunner(substrate, ReadinessProbe(SubstrateResolver(substrate)))
            return await runner.run(ctx)

        result = asyncio.run(run())
        assert result.ready
        assert recorder.states == [TaskState.PROBING, TaskState.RUNNING, TaskState.READY]
        assert substrate.launched_tasks == ["a", "b"]

    def test_own_address_never_resolves(self, substrate, task):
        substrate.unresolvable.add("a")
        recorder = Recorder()
        result = _run(substrate, _context(task("a", port=8888), recorder))

        assert result.state == TaskState.FAILED
        assert recorder.states == [TaskState.RUNNING, TaskState.FAILED]
        assert "own address a:8888/udp not resolvable" in recorder.calls[-1][1]

    def test_cancellation_propagates(self, substrate, task):
        recorder = Recorder()
        doc = task("b", ["a"], readiness={"interval_seconds": 0.01, "max_attempts": None, "grace_seconds": 0})
        ctx = _context(doc, recorder, dependencies=["a"])

        async def run():
            await substrate.prepare("inst-1", ["a", "b"])
            runner = TaskRunner(substrate, ReadinessProbe(SubstrateResolver(substrate)))
            running = asyncio.create_task(runner.run(ctx))
            await asyncio.sleep(0.05)
            running.cancel()
            try:
                await running
            except asyncio.CancelledError:
                return True
            return False

        assert asyncio.run(run()) is True
        assert recorder.states == [TaskState.PROBING]
        assert substrate.launches == []
