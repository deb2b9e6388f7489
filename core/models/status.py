# ============================================================================
# STATUS SNAPSHOT MODEL
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core model - Derived, read-only views
# PURPOSE: What the status monitor reports each cycle
# CREATED: 13 OCT 2026
# EXPORTS: StatusSnapshot, InstanceStatusView, TaskStatusView
# DEPENDENCIES: pydantic
# ============================================================================
"""
Status Snapshot Models

Never authoritative. Built from copies of scheduler state plus whatever
the execution substrate says about its processes. Anything that can no
longer be found is reported as "unknown" rather than omitted.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from core.contracts import UNKNOWN
from core.models.instance import TransitionRecord


class TaskStatusView(BaseModel):
    name: str
    state: str = UNKNOWN
    address: Optional[str] = None
    reason: Optional[str] = None
    exit_code: Optional[int] = None
    process: str = UNKNOWN
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None


class InstanceStatusView(BaseModel):
    instance_id: str
    dag_id: Optional[str] = None
    status: str = UNKNOWN
    archived: bool = False
    created_at: Optional[datetime] = None
    tasks: List[TaskStatusView] = Field(default_factory=list)
    recent_transitions: List[TransitionRecord] = Field(default_factory=list)

    @property
    def is_unknown(self) -> bool:
        return self.status == UNKNOWN


class StatusSnapshot(BaseModel):
    taken_at: datetime = Field(default_factory=datetime.utcnow)
    cycle: int = 0
    instances: List[InstanceStatusView] = Field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        """Instance count per status."""
        result: Dict[str, int] = {}
        for view in self.instances:
            result[view.status] = result.get(view.status, 0) + 1
        return result

    def get(self, instance_id: str) -> Optional[InstanceStatusView]:
        for view in self.instances:
            if view.instance_id == instance_id:
                return view
        return None


__all__ = ["TaskStatusView", "InstanceStatusView", "StatusSnapshot"]
