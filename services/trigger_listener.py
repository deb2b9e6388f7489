# ============================================================================
# TRIGGER LISTENER
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Service - Inbound event intake
# PURPOSE: Turn inbound requests into queued events
# CREATED: 16 OCT 2026
# ============================================================================
"""
Trigger Listener

Accepts an inbound body for a configured route, checks its fixed shape,
wraps it unmodified in an EventEnvelope and publishes it on the event bus.

The listener never submits DAGs itself; that is the rule matcher's job on
the consuming side of the bus. A successful accept only means the event
is queued.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import TriggerDeliveryError
from core.logging import ComponentType, get_logger, log_context
from core.models import EventEnvelope, TriggerRoute
from messaging.bus import EventBus

logger = get_logger(__name__, ComponentType.TRIGGER)


class TriggerShapeError(ValueError):
    """
    Inbound body does not have the route's fixed shape.

    missing is None when the body is not a JSON object at all.
    """

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing


class TriggerListener:
    """Shape check + publish for inbound trigger requests."""

    def __init__(self, bus: EventBus):
        self.bus = bus
        self._accepted = 0
        self._rejected = 0
        self._delivery_failures = 0
        self._last_event_at: Optional[datetime] = None

    def check_shape(self, route: TriggerRoute, payload: Any) -> Dict[str, Any]:
        """
        Validate a body against a route.

        Raises:
            TriggerShapeError: body is not an object or lacks required fields
        """
        if not isinstance(payload, dict):
            raise TriggerShapeError(
                f"Route {route.name} expects a JSON object, got {type(payload).__name__}"
            )
        missing = [name for name in route.required_fields if name not in payload]
        if missing:
            raise TriggerShapeError(
                f"Route {route.name} is missing required fields: {', '.join(missing)}",
                missing=missing,
            )
        return payload

    async def accept(self, route: TriggerRoute, payload: Any) -> EventEnvelope:
        """
        Queue one inbound event.

        Returns:
            The published envelope

        Raises:
            TriggerShapeError: body rejected, nothing published
            TriggerDeliveryError: the bus refused the event
        """
        try:
            body = self.check_shape(route, payload)
        except TriggerShapeError as e:
            self._rejected += 1
            logger.warning(f"Rejected event on {route.path}: {e}")
            raise

        envelope = EventEnvelope(
            source=route.source,
            name=route.event_name,
            payload=body,
            route=route.name,
        )

        with log_context(event_id=envelope.event_id):
            try:
                await self.bus.publish(envelope)
            except TriggerDeliveryError as e:
                self._delivery_failures += 1
                logger.error(f"Event {envelope.source}/{envelope.name} not queued: {e}")
                raise

            self._accepted += 1
            self._last_event_at = envelope.received_at
            logger.info(f"Queued event {envelope.source}/{envelope.name} from route {route.name}")

        return envelope

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "accepted": self._accepted,
            "rejected": self._rejected,
            "delivery_failures": self._delivery_failures,
            "last_event_at": self._last_event_at.isoformat() if self._last_event_at else None,
        }


__all__ = ["TriggerListener", "TriggerShapeError"]
