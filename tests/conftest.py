# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - In-memory execution substrate and DAG builders
# PURPOSE: Run the scheduler without starting real processes
# CREATED: 18 OCT 2026
# ============================================================================
"""
Shared fixtures.

FakeSubstrate publishes a task's address the moment it is launched (unless
the address is listed in `unresolvable`) and never starts a process.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from core.config import reset_defaults
from core.errors import TaskStartError
from core.models import DagDefinition
from infrastructure.substrate import ExecutionSubstrate, LaunchSpec, StageHandle


class FakeHandle(StageHandle):
    """A stage that is 'running' until terminated or given an exit code."""

    def __init__(self, spec: LaunchSpec, exit_code: Optional[int] = None, lines: Optional[List[str]] = None):
        super().__init__(spec)
        self._returncode = exit_code
        self.lines = list(lines or [])
        self.terminated = False
        self._exited = asyncio.Event()
        if exit_code is not None:
            self._exited.set()

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    def exit(self, code: int) -> None:
        self._returncode = code
        self._exited.set()

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        if self._returncode is None:
            waiter = asyncio.ensure_future(self._exited.wait())
            try:
                done, _ = await asyncio.wait({waiter}, timeout=timeout)
            finally:
                if not waiter.done():
                    waiter.cancel()
            if not done:
                return None
        return self._returncode

    async def terminate(self, timeout: float = 5.0) -> None:
        if self._returncode is None:
            self.terminated = True
            self.exit(-15)

    def output(self, since: int = 0) -> Tuple[List[str], int]:
        return self.lines[since:], len(self.lines)


class FakeSubstrate(ExecutionSubstrate):
    """
    Records launches instead of starting processes.

    Attributes tests may set before submitting:
        fail_launch: task names whose launch raises TaskStartError
        exit_codes: task name -> exit code the stage reports immediately
        unresolvable: addresses that never become resolvable
        output: task name -> captured lines
    """

    def __init__(self):
        self.fail_launch: Set[str] = set()
        self.exit_codes: Dict[str, int] = {}
        self.unresolvable: Set[str] = set()
        self.output: Dict[str, List[str]] = {}

        self.launches: List[LaunchSpec] = []
        self.prepared: Dict[str, List[str]] = {}
        self.forgotten: List[str] = []
        self._published: Set[Tuple[str, str]] = set()
        self._handles: Dict[str, Dict[str, FakeHandle]] = {}

    @property
    def launched_tasks(self) -> List[str]:
        return [spec.task for spec in self.launches]

    async def prepare(self, instance_id: str, addresses: List[str]) -> None:
        self.prepared[instance_id] = list(addresses)

    async def launch(self, spec: LaunchSpec) -> StageHandle:
        if spec.task in self.fail_launch:
            raise TaskStartError(f"Command not found: {spec.argv[0]}", fatal=True)
        self.launches.append(spec)
        handle = FakeHandle(spec, self.exit_codes.get(spec.task), self.output.get(spec.task))
        self._handles.setdefault(spec.instance_id, {})[spec.task] = handle
        if spec.address not in self.unresolvable:
            self._published.add((spec.instance_id, spec.address))
        return handle

    async def lookup(self, scope: str, address: str) -> Optional[bool]:
        if (scope, address) in self._published:
            return True
        if address in self.prepared.get(scope, []):
            return False
        return None

    def handles(self, instance_id: str) -> Dict[str, StageHandle]:
        return dict(self._handles.get(instance_id, {}))

    async def forget(self, instance_id: str) -> None:
        await self.terminate_instance(instance_id)
        self._handles.pop(instance_id, None)
        self.prepared.pop(instance_id, None)
        self._published = {key for key in self._published if key[0] != instance_id}
        self.forgotten.append(instance_id)


def fast_task(name: str, depends_on: Optional[List[str]] = None, port: Optional[int] = None, **overrides: Any) -> Dict[str, Any]:
    """Task document with millisecond probe timings."""
    task: Dict[str, Any] = {
        "name": name,
        "command": ["python3", f"{name}.py"],
        "depends_on": depends_on or [],
        "readiness": {"interval_seconds": 0.01, "max_attempts": 5, "grace_seconds": 0},
        "startup_window_seconds": 0,
    }
    if port is not None:
        task["ports"] = [{"port": port}]
    task.update(overrides)
    return task


@pytest.fixture(autouse=True)
def _clean_defaults():
    """Each test reads defaults from its own environment."""
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def substrate():
    return FakeSubstrate()


@pytest.fixture
def make_dag():
    """Factory: make_dag([fast_task('a'), ...], dag_id='test-dag', params={...})."""
    def _make(tasks: List[Dict[str, Any]], dag_id: str = "test-dag", **extra: Any) -> DagDefinition:
        return DagDefinition.model_validate({"dag_id": dag_id, "tasks": tasks, **extra})
    return _make


@pytest.fixture
def task():
    """Expose fast_task to tests without importing conftest."""
    return fast_task


@pytest.fixture
def fake_substrate_cls():
    """For tests that subclass the fake to script launch behaviour."""
    return FakeSubstrate
