# ============================================================================
# LOCAL PROCESS SUBSTRATE TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - Real subprocesses
# PURPOSE: Verify launch, output capture, exit codes, naming and termination
# CREATED: 18 OCT 2026
# ============================================================================
"""
Local Process Substrate Tests

These start short-lived Python subprocesses (sys.executable), so they are
slower than the fake-substrate tests but still finish in a few seconds.

Run with:
    pytest tests/test_local_process.py -v
"""

import asyncio
import sys

import pytest

from core.contracts import InstanceStatus
from core.errors import TaskStartError
from infrastructure.local_process import LOCAL_HOST, LocalProcessSubstrate
from infrastructure.substrate import LaunchSpec
from orchestrator.scheduler import DagScheduler


# ============================================================================
# FIXTURES
# ============================================================================

SLEEPER = "import time; time.sleep(30)"


def _spec(code, task="stage", address="stage", instance_id="inst-1", **kwargs):
    return LaunchSpec(
        instance_id=instance_id,
        task=task,
        address=address,
        argv=(sys.executable, "-c", code),
        **kwargs,
    )


async def _drain(handle):
    """Wait for exit and for the output reader to reach EOF."""
    await handle.wait(5)
    await asyncio.wait_for(handle._reader, 5)


# ============================================================================
# PROCESSES
# ============================================================================

class TestLocalStageHandle:

    def test_output_captured_with_cursor(self):
        async def run():
            substrate = LocalProcessSubstrate()
            handle = await substrate.launch(_spec("for i in range(3): print('line', i)"))
            await _drain(handle)
            return handle

        handle = asyncio.run(run())
        assert handle.returncode == 0
        assert handle.output() == (["line 0", "line 1", "line 2"], 3)
        assert handle.output(2) == (["line 2"], 3)
        assert handle.output(3) == ([], 3)
        assert handle.describe() == "exited (0)"

    def test_stderr_is_captured(self):
        async def run():
            handle = await LocalProcessSubstrate().launch(
                _spec("import sys; sys.stderr.write('boom\\n'); sys.exit(4)")
            )
            await _drain(handle)
            return handle

        handle = asyncio.run(run())
        assert handle.returncode == 4
        assert handle.output()[0] == ["boom"]

    def test_ring_buffer_drops_oldest(self):
        async def run():
            substrate = LocalProcessSubstrate(max_output_lines=2)
            handle = await substrate.launch(_spec("for i in range(5): print(i)"))
            await _drain(handle)
            return handle

        handle = asyncio.run(run())
        assert handle.output() == (["3", "4"], 5)
        assert handle.output(1) == (["3", "4"], 5)

    def test_env_passed_through(self):
        async def run():
            handle = await LocalProcessSubstrate().launch(_spec(
                "import os; print(os.environ['PEER'], os.environ['STAGE_NAME'])",
                env={"PEER": "127.0.0.1"},
            ))
            await _drain(handle)
            return handle

        assert asyncio.run(run()).output()[0] == ["127.0.0.1 stage"]

    def test_terminate(self):
        async def run():
            substrate = LocalProcessSubstrate()
            handle = await substrate.launch(_spec(SLEEPER))
            assert handle.returncode is None
            assert handle.describe().startswith("running (pid ")
            await handle.terminate(timeout=5)
            return handle

        handle = asyncio.run(run())
        assert handle.returncode is not None
        assert handle.describe().startswith("terminated")

    def test_missing_command(self):
        spec = LaunchSpec("inst-1", "stage", "stage", ("/nonexistent/stage-binary",))
        with pytest.raises(TaskStartError, match="Command not found") as exc_info:
            asyncio.run(LocalProcessSubstrate().launch(spec))
        assert exc_info.value.fatal


# ============================================================================
# NAMING
# ============================================================================

class TestLocalNaming:

    def test_lookup_lifecycle(self):
        async def run():
            substrate = LocalProcessSubstrate()
            unmanaged = await substrate.lookup("inst-1", "stage")
            await substrate.prepare("inst-1", ["stage"])
            prepared = await substrate.lookup("inst-1", "stage")
            handle = await substrate.launch(_spec(SLEEPER))
            published = await substrate.lookup("inst-1", "stage")
            other_scope = await substrate.lookup("inst-2", "stage")
            await substrate.forget("inst-1")
            forgotten = await substrate.lookup("inst-1", "stage")
            return unmanaged, prepared, published, other_scope, forgotten, handle

        unmanaged, prepared, published, other_scope, forgotten, handle = asyncio.run(run())
        assert unmanaged is None
        assert prepared is False
        assert published is True
        assert other_scope is None
        assert forgotten is None
        assert handle.returncode is not None

    def test_propagation_delay(self):
        async def run():
            substrate = LocalProcessSubstrate(propagation_delay=0.2)
            await substrate.prepare("inst-1", ["stage"])
            await substrate.launch(_spec(SLEEPER))
            early = await substrate.lookup("inst-1", "stage")
            await asyncio.sleep(0.3)
            late = await substrate.lookup("inst-1", "stage")
            await substrate.shutdown()
            return early, late

        assert asyncio.run(run()) == (False, True)

    def test_endpoint_is_loopback(self):
        assert LocalProcessSubstrate().endpoint("inst-1", "stage") == LOCAL_HOST

    def test_stats(self):
        async def run():
            substrate = LocalProcessSubstrate()
            await substrate.launch(_spec(SLEEPER))
            stats = substrate.stats
            await substrate.shutdown()
            return stats, substrate.stats

        running, stopped = asyncio.run(run())
        assert running["live_stages"] == 1
        assert stopped["live_stages"] == 0
        assert stopped["stages"] == 1


# ============================================================================
# END TO END
# ============================================================================

class TestLocalPipeline:

    def test_two_stage_pipeline(self, make_dag, task):
        """Downstream stage gets its upstream's host rendered into its env."""
        upstream = task("upstream", port=17001, command=[sys.executable, "-c", SLEEPER])
        downstream = task(
            "downstream",
            ["upstream"],
            command=[sys.executable, "-c", "import os, time; print('peer', os.environ['PEER'], flush=True); time.sleep(30)"],
            env={"PEER": "{{ tasks.upstream.host }}:{{ tasks.upstream.port }}"},
        )
        dag = make_dag([upstream, downstream], dag_id="local-pipeline")

        async def run():
            substrate = LocalProcessSubstrate()
            scheduler = DagScheduler(substrate)
            instance_id = await scheduler.submit(dag)
            instance = await scheduler.wait(instance_id, timeout=10)

            lines = []
            for _ in range(100):
                lines, _ = scheduler.task_output(instance_id, "downstream")
                if lines:
                    break
                await asyncio.sleep(0.05)

            await scheduler.stop()
            await substrate.shutdown()
            return instance, lines, substrate

        instance, lines, substrate = asyncio.run(run())
        assert instance.status == InstanceStatus.SUCCEEDED
        assert lines == [f"peer {LOCAL_HOST}:17001"]
        assert substrate.stats["live_stages"] == 0
