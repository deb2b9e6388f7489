# ============================================================================
# MESSAGING MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Event bus between trigger intake and rule matching
# PURPOSE: At-least-once delivery of trigger events
# CREATED: 15 OCT 2026
# ============================================================================
"""
Messaging Module

Usage:
    from messaging import create_event_bus

    bus = create_event_bus()          # EVENT_BUS_BACKEND=memory|servicebus
    await bus.publish(envelope)
    await bus.consume_loop(handler, stop_event)
"""

from .config import EventBusConfig
from .bus import (
    Delivery,
    DeadLetter,
    EventBus,
    InMemoryEventBus,
    ServiceBusEventBus,
    create_event_bus,
)

__all__ = [
    "EventBusConfig",
    "Delivery",
    "DeadLetter",
    "EventBus",
    "InMemoryEventBus",
    "ServiceBusEventBus",
    "create_event_bus",
]
