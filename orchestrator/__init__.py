# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - DAG scheduling, task running, readiness probing
# PURPOSE: Drive stage DAG instances from submission to terminal state
# CREATED: 14 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import DagScheduler

    scheduler = DagScheduler(substrate)
    await scheduler.start()
    instance_id = await scheduler.submit(definition, {"symbol": "BTC-USD"})
    states = scheduler.poll(instance_id)
"""

from .probe import ProbeResult, ReadinessProbe
from .runner import RunContext, RunResult, TaskRunner
from .scheduler import DagScheduler

__all__ = [
    "ProbeResult",
    "ReadinessProbe",
    "RunContext",
    "RunResult",
    "TaskRunner",
    "DagScheduler",
]
