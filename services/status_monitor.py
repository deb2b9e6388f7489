# ============================================================================
# STATUS MONITOR
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Service - Read-only periodic status views
# PURPOSE: Snapshot instance/task/process state on a fixed cadence
# CREATED: 17 OCT 2026
# ============================================================================
"""
Status Monitor

Builds StatusSnapshots from the scheduler's copy-on-read views plus the
substrate's process descriptions, and renders them as a text table.

The monitor never changes anything: it only calls query methods. An
instance or task it cannot find is reported as "unknown", never dropped.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.config import MonitorDefaults, get_defaults
from core.contracts import UNKNOWN
from core.errors import InstanceNotFoundError
from core.models import (
    InstanceStatusView,
    StatusSnapshot,
    TaskStatusView,
    WorkflowInstance,
)
from infrastructure.substrate import ExecutionSubstrate
from orchestrator.scheduler import DagScheduler

logger = logging.getLogger(__name__)


class StatusMonitor:
    """
    Periodic, read-only status reporter.

    Args:
        scheduler: Source of instance state (queried, never mutated)
        substrate: Source of process descriptions
        config: Interval and transition history depth
    """

    def __init__(
        self,
        scheduler: DagScheduler,
        substrate: ExecutionSubstrate,
        config: Optional[MonitorDefaults] = None,
    ):
        self.scheduler = scheduler
        self.substrate = substrate
        self.config = config or get_defaults().monitor
        self._cycle = 0
        self._errors = 0
        self._last_snapshot_at: Optional[datetime] = None

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def snapshot(self, instance_ids: Optional[List[str]] = None) -> StatusSnapshot:
        """
        Build a snapshot of the given instances, or of every known instance.

        Ids that no longer exist appear with status "unknown".
        """
        self._cycle += 1
        if instance_ids is None:
            views = [self._view(instance) for instance in self.scheduler.list_instances()]
        else:
            views = []
            for instance_id in instance_ids:
                try:
                    instance = self.scheduler.get_instance(instance_id)
                except InstanceNotFoundError:
                    views.append(InstanceStatusView(instance_id=instance_id))
                    continue
                views.append(self._view(instance))

        snapshot = StatusSnapshot(cycle=self._cycle, instances=views)
        self._last_snapshot_at = snapshot.taken_at
        return snapshot

    def _view(self, instance: WorkflowInstance) -> InstanceStatusView:
        processes: Dict[str, str] = self.substrate.describe(instance.instance_id)
        tasks = [
            TaskStatusView(
                name=name,
                state=record.state.value,
                address=record.address,
                reason=record.reason,
                exit_code=record.exit_code,
                process=processes.get(name, UNKNOWN),
                started_at=record.started_at,
                ready_at=record.ready_at,
            )
            for name, record in instance.tasks.items()
        ]
        recent = self.config.recent_transitions
        return InstanceStatusView(
            instance_id=instance.instance_id,
            dag_id=instance.dag_id,
            status=instance.status.value,
            archived=instance.archived,
            created_at=instance.created_at,
            tasks=tasks,
            recent_transitions=instance.transitions[-recent:] if recent > 0 else [],
        )

    # =========================================================================
    # LOOP
    # =========================================================================

    async def run(
        self,
        render: Callable[[StatusSnapshot], Any],
        stop_event: Optional[asyncio.Event] = None,
        instance_ids: Optional[List[str]] = None,
    ) -> None:
        """
        Snapshot and render every interval until cancelled or stop_event is set.

        A failing cycle is logged; the next one runs on schedule.
        """
        stop_event = stop_event or asyncio.Event()
        interval = self.config.interval_seconds
        logger.info(f"Status monitor started (interval={interval}s)")
        next_tick = time.monotonic()

        while not stop_event.is_set():
            try:
                result = render(self.snapshot(instance_ids))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._errors += 1
                logger.exception(f"Status monitor cycle {self._cycle} failed: {e}")

            next_tick += interval
            delay = next_tick - time.monotonic()
            if delay < 0:
                # Overran one or more slots; realign rather than burst
                next_tick = time.monotonic()
                delay = 0
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("Status monitor stopped")

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "cycles": self._cycle,
            "errors": self._errors,
            "interval_seconds": self.config.interval_seconds,
            "last_snapshot_at": self._last_snapshot_at.isoformat() if self._last_snapshot_at else None,
        }


# ============================================================================
# TEXT RENDERING
# ============================================================================

def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%H:%M:%S") if value else "-"


def _table(headers: List[str], rows: List[List[str]]) -> List[str]:
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    lines = ["  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)).rstrip()]
    for row in rows:
        lines.append("  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip())
    return lines


def render_snapshot(snapshot: StatusSnapshot) -> str:
    """Human-readable view: one task table and recent transitions per instance."""
    lines = [
        f"Status at {snapshot.taken_at.strftime('%Y-%m-%d %H:%M:%S')} (cycle {snapshot.cycle})",
        "=" * 60,
    ]
    if not snapshot.instances:
        lines.append("No instances.")
        return "\n".join(lines)

    counts = ", ".join(f"{status}={count}" for status, count in sorted(snapshot.counts().items()))
    lines.append(f"Instances: {len(snapshot.instances)} ({counts})")

    for view in snapshot.instances:
        lines.append("")
        archived = " [archived]" if view.archived else ""
        lines.append(f"{view.instance_id}  dag={view.dag_id or UNKNOWN}  status={view.status}{archived}")
        if view.is_unknown:
            continue

        rows = [
            [
                task.name,
                task.state,
                task.address or "-",
                task.process,
                _fmt_time(task.started_at),
                _fmt_time(task.ready_at),
                task.reason or "",
            ]
            for task in view.tasks
        ]
        for line in _table(["TASK", "STATE", "ADDRESS", "PROCESS", "STARTED", "READY", "REASON"], rows):
            lines.append(f"  {line}")

        if view.recent_transitions:
            lines.append("  Recent transitions:")
            for record in view.recent_transitions:
                reason = f" ({record.reason})" if record.reason else ""
                lines.append(
                    f"    {_fmt_time(record.at)}  {record.task}: "
                    f"{record.from_state.value} -> {record.to_state.value}{reason}"
                )

    return "\n".join(lines)


__all__ = ["StatusMonitor", "render_snapshot"]
