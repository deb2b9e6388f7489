# ============================================================================
# STATUS MONITOR TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - Read-only status views
# PURPOSE: Verify snapshots, unknown reporting, text rendering and cadence
# CREATED: 18 OCT 2026
# ============================================================================
"""
Status Monitor Tests

Run with:
    pytest tests/test_status_monitor.py -v
"""

import asyncio

from core.config import MonitorDefaults
from core.contracts import UNKNOWN
from core.models import StatusSnapshot
from orchestrator.scheduler import DagScheduler
from services import StatusMonitor, render_snapshot


# ============================================================================
# FIXTURES
# ============================================================================

def _finished_monitor(substrate, dag, recent=3):
    """Run dag to completion and return (monitor, instance_id)."""
    async def run():
        scheduler = DagScheduler(substrate)
        instance_id = await scheduler.submit(dag)
        await scheduler.wait(instance_id, timeout=5)
        return StatusMonitor(scheduler, substrate, MonitorDefaults(recent_transitions=recent)), instance_id
    return asyncio.run(run())


# ============================================================================
# SNAPSHOTS
# ============================================================================

class TestSnapshot:

    def test_snapshot_of_finished_instance(self, substrate, make_dag, task):
        dag = make_dag([task("a", port=8888), task("b", ["a"])])
        monitor, instance_id = _finished_monitor(substrate, dag)

        snapshot = monitor.snapshot()
        view = snapshot.get(instance_id)
        assert view.status == "succeeded"
        assert view.dag_id == "test-dag"
        assert [t.name for t in view.tasks] == ["a", "b"]
        assert {t.state for t in view.tasks} == {"ready"}
        assert {t.process for t in view.tasks} == {"running"}
        assert len(view.recent_transitions) == 3
        assert snapshot.counts() == {"succeeded": 1}

    def test_unknown_instance_reported_not_dropped(self, substrate, make_dag, task):
        monitor, instance_id = _finished_monitor(substrate, make_dag([task("a")]))
        snapshot = monitor.snapshot([instance_id, "ghost-00000"])

        assert [v.instance_id for v in snapshot.instances] == [instance_id, "ghost-00000"]
        ghost = snapshot.get("ghost-00000")
        assert ghost.status == UNKNOWN
        assert ghost.is_unknown

    def test_missing_process_is_unknown(self, substrate, make_dag, task):
        substrate.fail_launch.add("a")
        monitor, instance_id = _finished_monitor(substrate, make_dag([task("a")]))
        view = monitor.snapshot([instance_id]).get(instance_id)
        assert view.status == "failed"
        assert view.tasks[0].process == UNKNOWN
        assert view.tasks[0].reason.startswith("start failed")

    def test_zero_recent_transitions(self, substrate, make_dag, task):
        monitor, instance_id = _finished_monitor(substrate, make_dag([task("a")]), recent=0)
        assert monitor.snapshot([instance_id]).get(instance_id).recent_transitions == []

    def test_cycles_counted(self, substrate, make_dag, task):
        monitor, _ = _finished_monitor(substrate, make_dag([task("a")]))
        monitor.snapshot()
        second = monitor.snapshot()
        assert second.cycle == 2
        assert monitor.stats["cycles"] == 2
        assert monitor.stats["last_snapshot_at"] is not None


# ============================================================================
# RENDERING
# ============================================================================

class TestRenderSnapshot:

    def test_empty(self):
        text = render_snapshot(StatusSnapshot(cycle=1))
        assert "(cycle 1)" in text
        assert "No instances." in text

    def test_table(self, substrate, make_dag, task):
        monitor, instance_id = _finished_monitor(substrate, make_dag([task("a", port=8888)]))
        text = render_snapshot(monitor.snapshot([instance_id, "ghost-00000"]))

        assert "Instances: 2 (succeeded=1, unknown=1)" in text
        assert f"{instance_id}  dag=test-dag  status=succeeded" in text
        assert "ghost-00000  dag=unknown  status=unknown" in text
        for header in ("TASK", "STATE", "ADDRESS", "PROCESS", "STARTED", "READY", "REASON"):
            assert header in text
        assert "  Recent transitions:" in text
        assert "a: running -> ready" in text


# ============================================================================
# LOOP
# ============================================================================

class TestMonitorLoop:

    def test_renders_each_cycle_until_stopped(self, substrate):
        rendered = []

        async def run():
            monitor = StatusMonitor(DagScheduler(substrate), substrate, MonitorDefaults(interval_seconds=0.01))
            stop = asyncio.Event()

            def render(snapshot):
                rendered.append(snapshot.cycle)
                if len(rendered) == 3:
                    stop.set()

            await asyncio.wait_for(monitor.run(render, stop), timeout=2)
            return monitor

        monitor = asyncio.run(run())
        assert rendered == [1, 2, 3]
        assert monitor.stats["errors"] == 0

    def test_async_render(self, substrate):
        rendered = []

        async def run():
            monitor = StatusMonitor(DagScheduler(substrate), substrate, MonitorDefaults(interval_seconds=0.01))
            stop = asyncio.Event()

            async def render(snapshot):
                rendered.append(snapshot.cycle)
                stop.set()

            await asyncio.wait_for(monitor.run(render, stop), timeout=2)

        asyncio.run(run())
        assert rendered == [1]

    def test_failing_cycle_does_not_stop_loop(self, substrate):
        async def run():
            monitor = StatusMonitor(DagScheduler(substrate), substrate, MonitorDefaults(interval_seconds=0.01))
            stop = asyncio.Event()
            calls = []

            def render(snapshot):
                calls.append(snapshot.cycle)
                if len(calls) == 3:
                    stop.set()
                raise RuntimeError("terminal gone")

            await asyncio.wait_for(monitor.run(render, stop), timeout=2)
            return monitor

        monitor = asyncio.run(run())
        assert monitor.stats["errors"] == 3
        assert monitor.stats["cycles"] == 3
