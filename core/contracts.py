# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Foundation - Core enums shared by every component
# PURPOSE: Task, instance and probe lifecycle states
# CREATED: 12 OCT 2026
# EXPORTS: TaskState, InstanceStatus, ProbeOutcome, DependencyGate, Protocol
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the stage orchestrator.

These enums cross every boundary in the system:
- Scheduler (authoritative task state)
- HTTP API (status responses)
- Status monitor (read-only snapshots)
"""

from enum import Enum


UNKNOWN = "unknown"


# ============================================================================
# STATUS ENUMS
# ============================================================================

class TaskState(str, Enum):
    """
    Task lifecycle states within a workflow instance.

    State transitions:
        PENDING -> WAITING_ON_DEPENDENCIES -> PROBING -> RUNNING -> READY
                -> RUNNING (no dependencies)              -> FAILED
        any non-terminal state -> FAILED
    """
    PENDING = "pending"                                # Created, runner not yet scheduled
    WAITING_ON_DEPENDENCIES = "waiting_on_dependencies"  # Blocked on upstream gate
    PROBING = "probing"                                # Polling dependency addresses
    RUNNING = "running"                                # Process launched
    READY = "ready"                                    # Launched and reachable
    FAILED = "failed"                                  # Terminal failure

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self in (TaskState.READY, TaskState.FAILED)

    def is_started(self) -> bool:
        """Check if the stage process has been launched."""
        return self in (TaskState.RUNNING, TaskState.READY)


class InstanceStatus(str, Enum):
    """
    Workflow instance lifecycle states.

    State transitions:
        RUNNING -> SUCCEEDED
                -> FAILED
                -> CANCELLED
    """
    RUNNING = "running"
    SUCCEEDED = "succeeded"      # Every task reached READY
    FAILED = "failed"            # At least one task FAILED
    CANCELLED = "cancelled"      # Operator cancelled

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (InstanceStatus.SUCCEEDED, InstanceStatus.FAILED, InstanceStatus.CANCELLED)


class ProbeOutcome(str, Enum):
    """Result of a readiness probe."""
    READY = "ready"
    TIMED_OUT = "timed_out"


class DependencyGate(str, Enum):
    """
    When a dependency counts as satisfied for its dependents.

    STARTED: as soon as the dependency process launches.
    READY: only once the dependency itself passes its readiness probe.
    """
    STARTED = "started"
    READY = "ready"


class Protocol(str, Enum):
    """Transport of an exposed stage port."""
    UDP = "udp"
    TCP = "tcp"


__all__ = [
    "UNKNOWN",
    "TaskState",
    "InstanceStatus",
    "ProbeOutcome",
    "DependencyGate",
    "Protocol",
]
