# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# CREATED: 12 OCT 2026
# ============================================================================

from core.contracts import (
    UNKNOWN,
    TaskState,
    InstanceStatus,
    ProbeOutcome,
    DependencyGate,
    Protocol,
)
from core.errors import (
    OrchestrationError,
    ValidationError,
    CyclicGraphError,
    UnknownDependencyError,
    MalformedDefinitionError,
    ReadinessTimeout,
    TaskStartError,
    TriggerDeliveryError,
    InstanceNotFoundError,
    InstanceActiveError,
)
from core.models import (
    DagDefinition,
    TaskDefinition,
    WorkflowInstance,
    TaskRecord,
    TransitionRecord,
    TriggerRoute,
    TriggerRule,
    EventEnvelope,
    StatusSnapshot,
)

__all__ = [
    # Enums
    "UNKNOWN",
    "TaskState",
    "InstanceStatus",
    "ProbeOutcome",
    "DependencyGate",
    "Protocol",
    # Errors
    "OrchestrationError",
    "ValidationError",
    "CyclicGraphError",
    "UnknownDependencyError",
    "MalformedDefinitionError",
    "ReadinessTimeout",
    "TaskStartError",
    "TriggerDeliveryError",
    "InstanceNotFoundError",
    "InstanceActiveError",
    # Models
    "DagDefinition",
    "TaskDefinition",
    "WorkflowInstance",
    "TaskRecord",
    "TransitionRecord",
    "TriggerRoute",
    "TriggerRule",
    "EventEnvelope",
    "StatusSnapshot",
]
