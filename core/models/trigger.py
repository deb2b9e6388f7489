# ============================================================================
# TRIGGER MODELS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core model - Inbound routes, rules and queued events
# PURPOSE: Shapes shared by the trigger listener, event bus and rule matcher
# CREATED: 13 OCT 2026
# EXPORTS: TriggerRoute, TriggerRule, EventEnvelope
# DEPENDENCIES: pydantic
# ============================================================================
"""
Trigger Models

Three pieces carry an external event to a DAG submission:
- TriggerRoute: where an event arrives and the shape it must have
- EventEnvelope: the queued message (payload carried unmodified)
- TriggerRule: which DAG an event of (source, name) submits, and how
  payload fields bind to DAG parameters

Key Design:
- Rules are frozen once loaded; the matcher's table never changes at runtime
- Explicit serialization via to_bus_body() / from_bus_body()
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerRoute(BaseModel):
    """
    An inbound HTTP endpoint that turns requests into events.

    Example (YAML):
        name: order-book
        path: /algo/order-book
        method: POST
        source: trading-event-source
        event_name: algo-order-book
        required_fields: [symbol]
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., max_length=64)
    path: str = Field(..., pattern=r"^/[A-Za-z0-9_\-/{}.]*$")
    method: str = Field(default="POST")
    source: str = Field(..., max_length=128)
    event_name: str = Field(..., max_length=128)
    required_fields: List[str] = Field(default_factory=list)

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        method = v.upper()
        if method not in ("POST", "PUT"):
            raise ValueError(f"Unsupported trigger method: {v}")
        return method


class TriggerRule(BaseModel):
    """
    Immutable mapping from an event to a DAG submission.

    bindings values are Jinja2 templates evaluated against
    {"payload": <event payload>, "event": <envelope fields>}.
    Static params are applied first, bindings override them.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., max_length=64)
    source: str = Field(..., max_length=128)
    event_name: str = Field(..., max_length=128)
    dag_id: str = Field(..., max_length=64)
    params: Dict[str, Any] = Field(default_factory=dict)
    bindings: Dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.source, self.event_name)


class EventEnvelope(BaseModel):
    """
    Message format for the event bus.

    The payload is the inbound body, carried unmodified.
    """
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source: str = Field(..., max_length=128)
    name: str = Field(..., max_length=128)
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=datetime.utcnow)
    route: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "source": "trading-event-source",
                "name": "algo-order-book",
                "payload": {"symbol": "BTC-USD", "depth": 20},
            }
        }
    }

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_bus_body(self) -> str:
        """Serialize to JSON string for a queue message body."""
        return self.model_dump_json()

    @classmethod
    def from_bus_body(cls, body: str) -> "EventEnvelope":
        """
        Deserialize from a queue message body.

        Raises:
            pydantic.ValidationError: If JSON is invalid or missing required fields
        """
        return cls.model_validate_json(body)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["TriggerRoute", "TriggerRule", "EventEnvelope"]
