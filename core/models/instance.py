# ============================================================================
# WORKFLOW INSTANCE MODEL
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core model - Runtime state owned by the scheduler
# PURPOSE: Track each task's lifecycle within one DAG execution
# CREATED: 12 OCT 2026
# EXPORTS: WorkflowInstance, TaskRecord, TransitionRecord, TriggerInfo
# DEPENDENCIES: pydantic
# ============================================================================
"""
Workflow Instance Model

Key concept:
- DagDefinition.TaskDefinition = TEMPLATE (how to launch)
- TaskRecord = INSTANCE (runtime state for one submission)

Each submission creates one WorkflowInstance holding N TaskRecords.
Only the DAG scheduler mutates these; everyone else reads copies.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import InstanceStatus, TaskState


_ALLOWED_TRANSITIONS = {
    TaskState.PENDING: {
        TaskState.WAITING_ON_DEPENDENCIES,
        TaskState.RUNNING,
        TaskState.FAILED,
    },
    TaskState.WAITING_ON_DEPENDENCIES: {TaskState.PROBING, TaskState.FAILED},
    TaskState.PROBING: {TaskState.RUNNING, TaskState.FAILED},
    TaskState.RUNNING: {TaskState.READY, TaskState.FAILED},
    TaskState.READY: set(),
    TaskState.FAILED: set(),
}


def generate_instance_id(prefix: str) -> str:
    """Generate a name-style id: '<prefix>-<5 hex>'."""
    return f"{prefix}-{uuid.uuid4().hex[:5]}"


class TransitionRecord(BaseModel):
    """One task state change, kept in a bounded per-instance history."""
    instance_id: str
    task: str
    from_state: TaskState
    to_state: TaskState
    at: datetime = Field(default_factory=datetime.utcnow)
    reason: Optional[str] = None


class TriggerInfo(BaseModel):
    """The event that caused a submission, if any."""
    event_id: str
    source: str
    name: str
    rule: Optional[str] = None


class TaskRecord(BaseModel):
    """
    Runtime state of one task within an instance.

    Lifecycle:
        1. Created PENDING at submit
        2. Tasks with dependencies wait, then probe their upstream addresses
        3. RUNNING once the substrate has launched the process
        4. READY once its own address resolves, or FAILED with a reason
    """
    name: str
    state: TaskState = Field(default=TaskState.PENDING)
    address: str
    depends_on: List[str] = Field(default_factory=list)

    reason: Optional[str] = Field(default=None, max_length=2000)
    exit_code: Optional[int] = None
    probe_attempts: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal()

    def can_transition_to(self, new_state: TaskState) -> bool:
        """
        Validate if a state transition is allowed.

        Valid transitions:
            PENDING -> WAITING_ON_DEPENDENCIES, RUNNING, FAILED
            WAITING_ON_DEPENDENCIES -> PROBING, FAILED
            PROBING -> RUNNING, FAILED
            RUNNING -> READY, FAILED
            READY, FAILED -> (none, terminal)
        """
        return new_state in _ALLOWED_TRANSITIONS.get(self.state, set())

    def apply(
        self,
        new_state: TaskState,
        reason: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> TaskState:
        """
        Move to new_state and stamp timestamps.

        Returns the previous state.
        Raises ValueError on an illegal transition.
        """
        if not self.can_transition_to(new_state):
            raise ValueError(f"Cannot transition {self.name} from {self.state.value} to {new_state.value}")

        previous = self.state
        now = datetime.utcnow()
        self.state = new_state
        self.updated_at = now
        if reason is not None:
            self.reason = reason
        if exit_code is not None:
            self.exit_code = exit_code

        if new_state == TaskState.RUNNING:
            self.started_at = now
        elif new_state == TaskState.READY:
            self.ready_at = now
        if new_state.is_terminal():
            self.finished_at = now
        return previous


class WorkflowInstance(BaseModel):
    """
    One execution of a DagDefinition.

    Archived once every task is terminal (or on cancellation);
    removed only by an explicit reclaim.
    """
    instance_id: str
    dag_id: str
    dag_version: int = 1
    params: Dict[str, Any] = Field(default_factory=dict)
    status: InstanceStatus = Field(default=InstanceStatus.RUNNING)
    trigger: Optional[TriggerInfo] = None

    tasks: Dict[str, TaskRecord] = Field(default_factory=dict)
    transitions: List[TransitionRecord] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    archived: bool = False
    archived_at: Optional[datetime] = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def all_tasks_terminal(self) -> bool:
        return all(record.state.is_terminal() for record in self.tasks.values())

    def task_states(self) -> Dict[str, TaskState]:
        return {name: record.state for name, record in self.tasks.items()}

    def record_transition(self, record: TransitionRecord, limit: int) -> None:
        """Append to history, dropping the oldest entries beyond limit."""
        self.transitions.append(record)
        overflow = len(self.transitions) - limit
        if overflow > 0:
            del self.transitions[:overflow]

    def archive(self) -> None:
        now = datetime.utcnow()
        self.archived = True
        self.archived_at = now
        if self.finished_at is None:
            self.finished_at = now


__all__ = [
    "generate_instance_id",
    "TransitionRecord",
    "TriggerInfo",
    "TaskRecord",
    "WorkflowInstance",
]
