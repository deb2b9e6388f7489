# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

from core.contracts import InstanceStatus, TaskState
from core.models import DagDefinition, TaskRecord, TransitionRecord, TriggerInfo, WorkflowInstance


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class SubmitRequest(BaseModel):
    """
    Request to start a DAG instance.

    Exactly one of dag_id (a loaded definition), definition (inline
    object) or definition_yaml (inline YAML document) must be given.
    """
    dag_id: Optional[str] = Field(None, max_length=64, description="Loaded DAG to run")
    definition: Optional[Dict[str, Any]] = Field(None, description="Inline DAG definition")
    definition_yaml: Optional[str] = Field(None, description="Inline DAG definition as YAML")
    params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Parameter values for the DAG"
    )

    @model_validator(mode="after")
    def exactly_one_source(self) -> "SubmitRequest":
        given = [x for x in (self.dag_id, self.definition, self.definition_yaml) if x is not None]
        if len(given) != 1:
            raise ValueError("Provide exactly one of dag_id, definition, definition_yaml")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "dag_id": "trading-system",
                    "params": {"symbol": "BTC-USD"}
                }
            ]
        }
    }


class CancelRequest(BaseModel):
    """Optional body for a cancel call."""
    reason: str = Field(default="cancelled", max_length=256)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class DagResponse(BaseModel):
    """DAG definition summary."""
    dag_id: str
    entrypoint: str
    version: int
    description: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    tasks: List[str] = Field(default_factory=list)
    edges: Dict[str, List[str]] = Field(default_factory=dict)

    @classmethod
    def from_definition(cls, definition: DagDefinition) -> "DagResponse":
        return cls(
            dag_id=definition.dag_id,
            entrypoint=definition.entrypoint,
            version=definition.version,
            description=definition.description,
            params=definition.params,
            tasks=definition.task_names,
            edges={task.name: list(task.depends_on) for task in definition.tasks},
        )


class DagListResponse(BaseModel):
    dags: List[DagResponse]
    total: int


class SubmitResponse(BaseModel):
    """Returned when an instance is accepted."""
    instance_id: str
    dag_id: str
    status: InstanceStatus = InstanceStatus.RUNNING


class TaskResponse(BaseModel):
    """Task state response."""
    name: str
    state: TaskState
    address: str
    depends_on: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    probe_attempts: int = 0
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: TaskRecord) -> "TaskResponse":
        return cls(
            name=record.name,
            state=record.state,
            address=record.address,
            depends_on=record.depends_on,
            reason=record.reason,
            exit_code=record.exit_code,
            probe_attempts=record.probe_attempts,
            started_at=record.started_at,
            ready_at=record.ready_at,
            finished_at=record.finished_at,
        )


class InstanceResponse(BaseModel):
    """Instance with its tasks."""
    instance_id: str
    dag_id: str
    dag_version: int
    status: InstanceStatus
    params: Dict[str, Any] = Field(default_factory=dict)
    trigger: Optional[TriggerInfo] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
    archived: bool = False
    tasks: List[TaskResponse] = Field(default_factory=list)
    task_summary: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_instance(cls, instance: WorkflowInstance) -> "InstanceResponse":
        summary: Dict[str, int] = {}
        for record in instance.tasks.values():
            summary[record.state.value] = summary.get(record.state.value, 0) + 1
        return cls(
            instance_id=instance.instance_id,
            dag_id=instance.dag_id,
            dag_version=instance.dag_version,
            status=instance.status,
            params=instance.params,
            trigger=instance.trigger,
            created_at=instance.created_at,
            finished_at=instance.finished_at,
            archived=instance.archived,
            tasks=[TaskResponse.from_record(r) for r in instance.tasks.values()],
            task_summary=summary,
        )


class InstanceListResponse(BaseModel):
    instances: List[InstanceResponse]
    total: int


class TaskLogsResponse(BaseModel):
    """Captured stage output from a cursor; pass cursor back as ?since= to continue."""
    instance_id: str
    task: str
    lines: List[str] = Field(default_factory=list)
    cursor: int = 0


class TransitionListResponse(BaseModel):
    instance_id: str
    transitions: List[TransitionRecord]


class ErrorResponse(BaseModel):
    """Error response."""
    detail: str
    errors: Optional[List[str]] = None
