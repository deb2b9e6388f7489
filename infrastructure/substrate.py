# ============================================================================
# EXECUTION SUBSTRATE INTERFACE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Abstract launch/naming surface
# PURPOSE: Decouple the scheduler from where stage processes actually run
# CREATED: 14 OCT 2026
# ============================================================================
"""
Execution Substrate

The scheduler never starts processes or publishes names itself. It asks a
substrate to:
- launch a stage from a LaunchSpec and hand back a StageHandle
- say whether a logical address is resolvable yet (per instance)
- describe, terminate and forget an instance's processes

Placement and networking are the substrate's business. The local-process
adapter in infrastructure.local_process is the reference implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class LaunchSpec:
    """Fully rendered launch request for one stage."""
    instance_id: str
    task: str
    address: str
    argv: Tuple[str, ...]
    env: Dict[str, str] = field(default_factory=dict)
    ports: Tuple[int, ...] = ()
    workdir: Optional[str] = None


class StageHandle(ABC):
    """A launched stage process."""

    def __init__(self, spec: LaunchSpec):
        self.spec = spec

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        """Exit code, or None while the process is alive."""

    @abstractmethod
    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for exit.

        Returns the exit code, or None if still running after timeout.
        """

    @abstractmethod
    async def terminate(self, timeout: float = 5.0) -> None:
        """Stop the process, escalating to kill after timeout."""

    @abstractmethod
    def output(self, since: int = 0) -> Tuple[List[str], int]:
        """
        Captured output lines from cursor 'since'.

        Returns (lines, next_cursor).
        """

    def describe(self) -> str:
        code = self.returncode
        if code is None:
            return "running"
        return f"exited ({code})"


class ExecutionSubstrate(ABC):
    """Where stages run and how their logical names become resolvable."""

    async def prepare(self, instance_id: str, addresses: List[str]) -> None:
        """Declare the addresses an instance will own before any launch."""

    @abstractmethod
    async def launch(self, spec: LaunchSpec) -> StageHandle:
        """
        Start a stage.

        Raises:
            TaskStartError: the stage could not be started
        """

    @abstractmethod
    async def lookup(self, scope: str, address: str) -> Optional[bool]:
        """
        Is address resolvable within scope (an instance id)?

        Returns None if the substrate does not manage this name.
        """

    def endpoint(self, instance_id: str, address: str) -> str:
        """Host string a stage should use to reach address."""
        return address

    @abstractmethod
    def handles(self, instance_id: str) -> Dict[str, StageHandle]:
        """Launched stages of an instance, by task name."""

    def describe(self, instance_id: str) -> Dict[str, str]:
        """Process state per task, for status views."""
        return {task: handle.describe() for task, handle in self.handles(instance_id).items()}

    async def terminate_instance(self, instance_id: str, timeout: float = 5.0) -> None:
        """Terminate every live stage of an instance."""
        for handle in list(self.handles(instance_id).values()):
            if handle.returncode is None:
                await handle.terminate(timeout)

    @abstractmethod
    async def forget(self, instance_id: str) -> None:
        """Drop handles and names of a reclaimed instance."""

    async def shutdown(self) -> None:
        """Terminate everything this substrate launched."""

    @property
    def stats(self) -> Dict[str, Any]:
        return {"backend": type(self).__name__}


__all__ = ["LaunchSpec", "StageHandle", "ExecutionSubstrate"]
