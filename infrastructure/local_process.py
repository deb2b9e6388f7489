# ============================================================================
# LOCAL PROCESS SUBSTRATE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Reference substrate using OS subprocesses
# PURPOSE: Run stages on this host with an eventually consistent name table
# CREATED: 14 OCT 2026
# ============================================================================
"""
Local Process Substrate

Runs each stage as a subprocess of the orchestrator.

Naming mimics a cluster service registry:
- prepare() declares an instance's addresses (unresolvable at first)
- launch() publishes the stage's address after a propagation delay
- every address maps to 127.0.0.1; ports are whatever the DAG declares

Output is captured line by line into a bounded buffer per stage.
"""

import asyncio
import logging
import os
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from core.errors import TaskStartError
from infrastructure.substrate import ExecutionSubstrate, LaunchSpec, StageHandle

logger = logging.getLogger(__name__)


LOCAL_HOST = "127.0.0.1"


class LocalStageHandle(StageHandle):
    """A stage running as a local subprocess."""

    def __init__(
        self,
        spec: LaunchSpec,
        process: asyncio.subprocess.Process,
        max_lines: int = 1000,
    ):
        super().__init__(spec)
        self.process = process
        self._lines: Deque[str] = deque(maxlen=max_lines)
        self._total = 0
        self._terminated = False
        self._reader = asyncio.create_task(
            self._pump(), name=f"output-{spec.instance_id}-{spec.task}"
        )

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    async def _pump(self) -> None:
        """Copy stdout/stderr lines into the ring buffer until EOF."""
        stream = self.process.stdout
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the stream limit; drop it and keep reading
                self._lines.append("<line truncated>")
                self._total += 1
                continue
            if not raw:
                break
            self._lines.append(raw.decode("utf-8", errors="replace").rstrip("\n"))
            self._total += 1

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        waiter = asyncio.ensure_future(self.process.wait())
        try:
            done, _ = await asyncio.wait({waiter}, timeout=timeout)
        except asyncio.CancelledError:
            waiter.cancel()
            raise
        if not done:
            waiter.cancel()
            return None
        return waiter.result()

    async def terminate(self, timeout: float = 5.0) -> None:
        if self.process.returncode is not None:
            return
        self._terminated = True
        try:
            self.process.terminate()
        except ProcessLookupError:
            return
        if await self.wait(timeout) is None:
            logger.warning(
                f"{self.spec.instance_id}/{self.spec.task} ignored SIGTERM for {timeout}s, killing"
            )
            try:
                self.process.kill()
            except ProcessLookupError:
                return
            await self.process.wait()

    def output(self, since: int = 0) -> Tuple[List[str], int]:
        first_available = self._total - len(self._lines)
        start = max(since, first_available)
        lines = list(self._lines)[start - first_available:]
        return lines, self._total

    def describe(self) -> str:
        code = self.process.returncode
        if code is None:
            return f"running (pid {self.process.pid})"
        if self._terminated:
            return f"terminated ({code})"
        return f"exited ({code})"


class LocalProcessSubstrate(ExecutionSubstrate):
    """
    Execution substrate backed by local subprocesses.

    Args:
        propagation_delay: Seconds between launch and the address resolving
        max_output_lines: Ring buffer size per stage
    """

    def __init__(self, propagation_delay: float = 0.0, max_output_lines: int = 1000):
        self.propagation_delay = propagation_delay
        self.max_output_lines = max_output_lines
        # (instance_id, address) -> monotonic time the name resolves, None = not yet published
        self._names: Dict[Tuple[str, str], Optional[float]] = {}
        self._handles: Dict[str, Dict[str, LocalStageHandle]] = {}

    @classmethod
    def from_env(cls) -> "LocalProcessSubstrate":
        return cls(
            propagation_delay=float(os.getenv("LOCAL_NAME_PROPAGATION_SEC", 0.0)),
            max_output_lines=int(os.getenv("LOCAL_MAX_OUTPUT_LINES", 1000)),
        )

    async def prepare(self, instance_id: str, addresses: List[str]) -> None:
        for address in addresses:
            self._names.setdefault((instance_id, address), None)

    async def launch(self, spec: LaunchSpec) -> StageHandle:
        env = {**os.environ, **spec.env}
        env.setdefault("STAGE_INSTANCE_ID", spec.instance_id)
        env.setdefault("STAGE_NAME", spec.task)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
                env=env,
                cwd=spec.workdir,
            )
        except FileNotFoundError as e:
            raise TaskStartError(f"Command not found: {spec.argv[0]} ({e})", fatal=True)
        except PermissionError as e:
            raise TaskStartError(f"Command not executable: {spec.argv[0]} ({e})", fatal=True)
        except OSError as e:
            raise TaskStartError(f"Failed to start {spec.argv[0]}: {e}", fatal=True)

        handle = LocalStageHandle(spec, process, max_lines=self.max_output_lines)
        self._handles.setdefault(spec.instance_id, {})[spec.task] = handle
        self._names[(spec.instance_id, spec.address)] = time.monotonic() + self.propagation_delay

        logger.info(
            f"Launched {spec.instance_id}/{spec.task} pid={process.pid} "
            f"address={spec.address} ports={list(spec.ports)}"
        )
        return handle

    async def lookup(self, scope: str, address: str) -> Optional[bool]:
        key = (scope, address)
        if key not in self._names:
            return None
        published_at = self._names[key]
        return published_at is not None and time.monotonic() >= published_at

    def endpoint(self, instance_id: str, address: str) -> str:
        return LOCAL_HOST

    def handles(self, instance_id: str) -> Dict[str, StageHandle]:
        return dict(self._handles.get(instance_id, {}))

    async def forget(self, instance_id: str) -> None:
        await self.terminate_instance(instance_id)
        self._handles.pop(instance_id, None)
        for key in [k for k in self._names if k[0] == instance_id]:
            del self._names[key]

    async def shutdown(self) -> None:
        for instance_id in list(self._handles):
            await self.terminate_instance(instance_id)
        logger.info("Local process substrate shut down")

    @property
    def stats(self) -> Dict[str, Any]:
        handles = [h for group in self._handles.values() for h in group.values()]
        return {
            "backend": "local",
            "instances": len(self._handles),
            "stages": len(handles),
            "live_stages": sum(1 for h in handles if h.returncode is None),
            "propagation_delay": self.propagation_delay,
        }


__all__ = ["LOCAL_HOST", "LocalStageHandle", "LocalProcessSubstrate"]
