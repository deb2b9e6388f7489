# ============================================================================
# DAG DEFINITION MODEL
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core model - Pipeline template loaded from YAML
# PURPOSE: Describe stages, their ports, dependencies and readiness policy
# CREATED: 12 OCT 2026
# EXPORTS: DagDefinition, TaskDefinition, PortSpec, ReadinessSpec
# DEPENDENCIES: pydantic
# ============================================================================
"""
DAG Definition Models

A DagDefinition is the template for a workflow instance. It defines:
- What stages (tasks) exist and how each one is launched
- Which logical address and datagram ports each stage exposes
- Dependencies between stages
- How long to poll for a dependency before giving up

Definitions are loaded from YAML files and validated again at submit.
Each submission creates a WorkflowInstance based on a definition.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from core.config import get_defaults
from core.contracts import Protocol


DNS_LABEL_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class PortSpec(BaseModel):
    """A port exposed by a stage at its logical address."""
    port: int = Field(..., ge=1, le=65535)
    protocol: Protocol = Field(default=Protocol.UDP)
    name: Optional[str] = None


class ReadinessSpec(BaseModel):
    """
    Poll policy used when this task waits on its dependencies
    and when its own address is checked after launch.

    max_attempts=None polls until the task is cancelled.
    """
    interval_seconds: float = Field(
        default_factory=lambda: get_defaults().probe.interval_seconds, gt=0
    )
    max_attempts: Optional[int] = Field(
        default_factory=lambda: get_defaults().probe.max_attempts, ge=1
    )
    grace_seconds: float = Field(
        default_factory=lambda: get_defaults().probe.grace_seconds, ge=0
    )

    @property
    def is_bounded(self) -> bool:
        return self.max_attempts is not None


class TaskDefinition(BaseModel):
    """
    Definition of a single stage in a DAG.

    This is the TEMPLATE - how the stage is launched.
    TaskRecord (in instance.py) is the runtime state for one instance.
    """
    name: str = Field(..., max_length=63, pattern=DNS_LABEL_PATTERN)
    command: List[str] = Field(..., min_length=1, description="argv, may contain {{ templates }}")
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(
        default_factory=dict,
        description="Environment bindings with {{ template }} expressions"
    )
    depends_on: List[str] = Field(default_factory=list)
    address: Optional[str] = Field(
        default=None,
        max_length=63,
        pattern=DNS_LABEL_PATTERN,
        description="Stable logical name; defaults to the task name"
    )
    ports: List[PortSpec] = Field(default_factory=list)
    readiness: ReadinessSpec = Field(default_factory=ReadinessSpec)
    startup_window_seconds: float = Field(
        default_factory=lambda: get_defaults().scheduler.startup_window_seconds, ge=0
    )
    workdir: Optional[str] = None
    description: Optional[str] = None

    @field_validator("depends_on", mode="before")
    @classmethod
    def handle_string_input(cls, v):
        """Allow single string as shorthand for single-item list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("command", "args", mode="before")
    @classmethod
    def stringify_argv(cls, v):
        """YAML turns bare numbers into ints; argv is always strings."""
        if isinstance(v, list):
            return [str(item) for item in v]
        return v

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v):
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v

    @model_validator(mode="after")
    def default_address(self) -> "TaskDefinition":
        if self.address is None:
            self.address = self.name
        return self

    @property
    def primary_port(self) -> Optional[PortSpec]:
        return self.ports[0] if self.ports else None


class DagDefinition(BaseModel):
    """
    Complete DAG definition loaded from YAML.

    Immutable once loaded - changes require a new version.
    """
    dag_id: str = Field(..., max_length=64, pattern=DNS_LABEL_PATTERN)
    entrypoint: Optional[str] = Field(
        default=None,
        max_length=48,
        pattern=DNS_LABEL_PATTERN,
        description="Prefix for generated instance ids; defaults to dag_id"
    )
    version: int = Field(default=1, ge=1)
    description: Optional[str] = None

    # Declared parameters; a None default marks the parameter required
    params: Dict[str, Any] = Field(default_factory=dict)

    tasks: List[TaskDefinition] = Field(..., min_length=1)

    @model_validator(mode="after")
    def default_entrypoint(self) -> "DagDefinition":
        if self.entrypoint is None:
            self.entrypoint = self.dag_id[:48].rstrip("-")
        return self

    @property
    def task_names(self) -> List[str]:
        return [task.name for task in self.tasks]

    @property
    def required_params(self) -> List[str]:
        return [name for name, default in self.params.items() if default is None]

    def get_task(self, name: str) -> TaskDefinition:
        """Get a task definition by name."""
        for task in self.tasks:
            if task.name == name:
                return task
        raise KeyError(f"Task '{name}' not found in DAG '{self.dag_id}'")

    def validate_structure(self) -> List[str]:
        """
        Validate non-graph structure.

        Graph checks (unknown edges, cycles) live in orchestrator.engine.graph.
        Returns list of validation errors (empty if valid).
        """
        errors = []

        seen = set()
        for name in self.task_names:
            if name in seen:
                errors.append(f"Duplicate task name '{name}'")
            seen.add(name)

        addresses: Dict[str, str] = {}
        for task in self.tasks:
            owner = addresses.get(task.address)
            if owner is not None and owner != task.name:
                errors.append(
                    f"Tasks '{owner}' and '{task.name}' share address '{task.address}'"
                )
            addresses[task.address] = task.name

        for task in self.tasks:
            if len(set(task.depends_on)) != len(task.depends_on):
                errors.append(f"Task '{task.name}' lists a dependency more than once")

        return errors


__all__ = [
    "DNS_LABEL_PATTERN",
    "PortSpec",
    "ReadinessSpec",
    "TaskDefinition",
    "DagDefinition",
]
