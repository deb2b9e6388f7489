# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 12 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

- dag: templates loaded from YAML (DagDefinition, TaskDefinition)
- instance: runtime state owned by the scheduler
- trigger: inbound routes, rules and queued events
- status: derived snapshots produced by the status monitor
"""

from core.models.dag import DagDefinition, TaskDefinition, PortSpec, ReadinessSpec
from core.models.instance import (
    WorkflowInstance,
    TaskRecord,
    TransitionRecord,
    TriggerInfo,
    generate_instance_id,
)
from core.models.trigger import TriggerRoute, TriggerRule, EventEnvelope
from core.models.status import StatusSnapshot, InstanceStatusView, TaskStatusView

__all__ = [
    # DAG
    "DagDefinition",
    "TaskDefinition",
    "PortSpec",
    "ReadinessSpec",
    # Instance
    "WorkflowInstance",
    "TaskRecord",
    "TransitionRecord",
    "TriggerInfo",
    "generate_instance_id",
    # Trigger
    "TriggerRoute",
    "TriggerRule",
    "EventEnvelope",
    # Status
    "StatusSnapshot",
    "InstanceStatusView",
    "TaskStatusView",
]
