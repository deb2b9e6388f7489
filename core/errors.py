# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Foundation - Exceptions raised across components
# PURPOSE: Distinguish submit-time rejections from task-local failures
# CREATED: 12 OCT 2026
# ============================================================================
"""
Error taxonomy for the stage orchestrator.

Only ValidationError aborts a submission before any task launches.
Every other error is local to a task, an event, or a single request.
"""

from typing import List, Optional


class OrchestrationError(Exception):
    """Base class for all orchestrator errors."""


# ============================================================================
# SUBMIT-TIME VALIDATION
# ============================================================================

class ValidationError(OrchestrationError):
    """A DAG definition or its parameters were rejected at submit time."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class CyclicGraphError(ValidationError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle)}")


class UnknownDependencyError(ValidationError):
    """A task depends on a name that is not defined in the same DAG."""

    def __init__(self, task: str, dependency: str):
        self.task = task
        self.dependency = dependency
        super().__init__(f"Task '{task}' depends on unknown task '{dependency}'")


class MalformedDefinitionError(ValidationError):
    """Structural problems: duplicate names, bad params, bad templates."""


# ============================================================================
# TASK-LOCAL FAILURES
# ============================================================================

class ReadinessTimeout(OrchestrationError):
    """A bounded readiness probe exhausted its attempts."""

    def __init__(self, target: str, attempts: int, elapsed: float):
        self.target = target
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"{target} not resolvable after {attempts} attempts ({elapsed:.1f}s)"
        )


class TaskStartError(OrchestrationError):
    """
    The substrate could not launch a stage, or it exited during startup.

    fatal=True means retrying cannot help (missing executable, bad argv).
    """

    def __init__(self, message: str, exit_code: Optional[int] = None, fatal: bool = True):
        super().__init__(message)
        self.exit_code = exit_code
        self.fatal = fatal


# ============================================================================
# TRIGGER PATH
# ============================================================================

class TriggerDeliveryError(OrchestrationError):
    """An inbound event could not be handed to the event bus."""


# ============================================================================
# INSTANCE LOOKUP
# ============================================================================

class InstanceNotFoundError(OrchestrationError, KeyError):
    """No instance with this id exists (never created, or reclaimed)."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance not found: {instance_id}")

    def __str__(self) -> str:
        return self.args[0]


class InstanceActiveError(OrchestrationError):
    """The operation requires a terminal instance."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance still active: {instance_id}")


__all__ = [
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
]
