# ============================================================================
# EVENT BUS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - At-least-once queue between listener and rule matcher
# PURPOSE: Decouple event intake from DAG submission
# CREATED: 15 OCT 2026
# ============================================================================
"""
Event Bus

At-least-once, peek-lock delivery of EventEnvelopes.

    publish()  -> message queued (TriggerDeliveryError if the bus refuses it)
    receive()  -> message locked for this consumer, delivery_count incremented
    ack()      -> message removed
    abandon()  -> lock released, message redelivered
    dead_letter() -> message parked, never redelivered

A message whose lock expires before it is settled is redelivered. Consumers
must therefore tolerate duplicates; nothing here deduplicates.

Backends:
- InMemoryEventBus: single process, lost on restart
- ServiceBusEventBus: Azure Service Bus queue
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from azure.servicebus.exceptions import MessageLockLostError, ServiceBusError
from pydantic import ValidationError as PydanticValidationError

from core.errors import TriggerDeliveryError
from core.models import EventEnvelope
from infrastructure.service_bus import PERMANENT_SEND_ERRORS, ServiceBusQueue
from messaging.config import BACKEND_SERVICEBUS, EventBusConfig

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    """One delivery of a message to a consumer."""
    envelope: EventEnvelope
    delivery_count: int
    lock_token: str
    raw: Any = None
    settled: bool = False


@dataclass
class DeadLetter:
    envelope: EventEnvelope
    reason: str
    description: str
    delivery_count: int


Handler = Callable[[EventEnvelope, Delivery], Awaitable[Optional[bool]]]


class EventBus(ABC):
    """Abstract at-least-once event bus."""

    def __init__(self, config: Optional[EventBusConfig] = None):
        self.config = config or EventBusConfig()
        self._published = 0
        self._acked = 0
        self._abandoned = 0
        self._dead_lettered = 0
        self._received = 0

    @property
    @abstractmethod
    def backend(self) -> str:
        """Backend name for stats and health."""

    @abstractmethod
    async def publish(self, envelope: EventEnvelope) -> None:
        """
        Queue an event.

        Raises:
            TriggerDeliveryError: the bus did not accept the event
        """

    @abstractmethod
    async def receive(self, max_wait: Optional[float] = None) -> Optional[Delivery]:
        """Lock and return the next message, or None after max_wait."""

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Remove a delivered message."""

    @abstractmethod
    async def abandon(self, delivery: Delivery) -> None:
        """Release the lock so the message is redelivered."""

    @abstractmethod
    async def dead_letter(self, delivery: Delivery, reason: str, description: str = "") -> None:
        """Park a message permanently."""

    async def connect(self) -> None:
        """Open connections (no-op for in-process backends)."""

    async def close(self) -> None:
        """Release connections."""

    async def consume_loop(self, handler: Handler, stop_event: asyncio.Event) -> None:
        """
        Continuous consumption loop.

        Args:
            handler: Async function called for each message.
                     Signature: handler(envelope, delivery) -> bool
                     Returns True to ack, False to abandon. A handler that
                     settles the delivery itself (e.g. dead-letters it) wins.
                     Exceptions abandon.
            stop_event: Event to signal loop termination.
        """
        logger.info(f"Starting consume loop ({self.backend}: {self.config.queue_name})")
        await self.connect()

        while not stop_event.is_set():
            try:
                delivery = await self.receive(self.config.max_wait_seconds)
                if delivery is None:
                    continue

                try:
                    success = await handler(delivery.envelope, delivery)
                    if delivery.settled:
                        continue
                    if success:
                        await self.ack(delivery)
                    else:
                        await self.abandon(delivery)
                except Exception as e:
                    logger.exception(f"Handler error for event {delivery.envelope.event_id}: {e}")
                    if not delivery.settled:
                        await self.abandon(delivery)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in consume loop: {e}")
                await asyncio.sleep(self.config.error_backoff_seconds)

        logger.info(f"Consume loop stopped ({self.backend}: {self.config.queue_name})")

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "queue": self.config.queue_name,
            "durable": self.config.is_durable,
            "published": self._published,
            "received": self._received,
            "acked": self._acked,
            "abandoned": self._abandoned,
            "dead_lettered": self._dead_lettered,
        }


# ============================================================================
# IN-MEMORY BACKEND
# ============================================================================

@dataclass
class _Entry:
    envelope: EventEnvelope
    delivery_count: int = 0


@dataclass
class _Lock:
    entry: _Entry
    expires_at: float


class InMemoryEventBus(EventBus):
    """
    In-process bus with Service Bus-like peek-lock semantics.

    Bounded: publish fails with TriggerDeliveryError once capacity
    (queued + locked) is reached.
    """

    def __init__(self, config: Optional[EventBusConfig] = None):
        super().__init__(config)
        self._ready: Deque[_Entry] = deque()
        self._locked: Dict[str, _Lock] = {}
        self._dead: List[DeadLetter] = []
        self._available = asyncio.Event()
        self._closed = False

    @property
    def backend(self) -> str:
        return "memory"

    @property
    def depth(self) -> int:
        return len(self._ready) + len(self._locked)

    @property
    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead)

    async def publish(self, envelope: EventEnvelope) -> None:
        if self._closed:
            raise TriggerDeliveryError("Event bus is closed")
        if self.depth >= self.config.capacity:
            raise TriggerDeliveryError(
                f"Event queue full ({self.config.capacity} messages)"
            )
        self._ready.append(_Entry(envelope=envelope))
        self._published += 1
        self._available.set()
        logger.debug(f"Queued event {envelope.event_id} ({envelope.source}/{envelope.name})")

    def _expire_locks(self) -> None:
        now = time.monotonic()
        for token, lock in list(self._locked.items()):
            if lock.expires_at <= now:
                del self._locked[token]
                self._ready.appendleft(lock.entry)
                logger.warning(
                    f"Lock expired for event {lock.entry.envelope.event_id}, redelivering"
                )
        if self._ready:
            self._available.set()

    def _next_lock_expiry(self) -> Optional[float]:
        if not self._locked:
            return None
        return min(lock.expires_at for lock in self._locked.values())

    async def receive(self, max_wait: Optional[float] = None) -> Optional[Delivery]:
        wait = self.config.max_wait_seconds if max_wait is None else max_wait
        deadline = time.monotonic() + wait

        while not self._closed:
            self._expire_locks()

            while self._ready:
                entry = self._ready.popleft()
                entry.delivery_count += 1
                if entry.delivery_count > self.config.max_delivery_count:
                    self._park(entry, "MaxDeliveryCountExceeded",
                               f"Delivered {entry.delivery_count - 1} times without ack")
                    continue
                token = str(uuid.uuid4())
                self._locked[token] = _Lock(
                    entry=entry,
                    expires_at=time.monotonic() + self.config.lock_timeout_seconds,
                )
                self._received += 1
                return Delivery(
                    envelope=entry.envelope,
                    delivery_count=entry.delivery_count,
                    lock_token=token,
                )

            now = time.monotonic()
            if now >= deadline:
                return None
            timeout = deadline - now
            expiry = self._next_lock_expiry()
            if expiry is not None:
                timeout = max(0.0, min(timeout, expiry - now))

            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

        return None

    def _take_lock(self, delivery: Delivery) -> Optional[_Lock]:
        delivery.settled = True
        lock = self._locked.pop(delivery.lock_token, None)
        if lock is None:
            # Lock expired and the message was requeued; another delivery owns it now
            logger.warning(f"Lock lost for event {delivery.envelope.event_id}")
        return lock

    async def ack(self, delivery: Delivery) -> None:
        if self._take_lock(delivery) is not None:
            self._acked += 1

    async def abandon(self, delivery: Delivery) -> None:
        lock = self._take_lock(delivery)
        if lock is not None:
            self._abandoned += 1
            self._ready.append(lock.entry)
            self._available.set()

    async def dead_letter(self, delivery: Delivery, reason: str, description: str = "") -> None:
        lock = self._take_lock(delivery)
        if lock is not None:
            self._park(lock.entry, reason, description)

    def _park(self, entry: _Entry, reason: str, description: str) -> None:
        self._dead.append(DeadLetter(
            envelope=entry.envelope,
            reason=reason,
            description=description,
            delivery_count=entry.delivery_count,
        ))
        self._dead_lettered += 1
        logger.warning(f"Dead-lettered event {entry.envelope.event_id}: {reason} {description}")

    async def close(self) -> None:
        self._closed = True
        self._available.set()

    @property
    def stats(self) -> Dict[str, Any]:
        result = super().stats
        result.update({
            "depth": self.depth,
            "locked": len(self._locked),
            "capacity": self.config.capacity,
        })
        return result


# ============================================================================
# SERVICE BUS BACKEND
# ============================================================================

class ServiceBusEventBus(EventBus):
    """
    Durable bus on an Azure Service Bus queue.

    Redelivery and max delivery count are enforced by the queue itself.
    """

    def __init__(self, config: EventBusConfig, queue: Optional[ServiceBusQueue] = None):
        super().__init__(config)
        self.queue = queue or ServiceBusQueue(
            config.queue_name,
            connection_string=config.connection_string,
            fully_qualified_namespace=config.fully_qualified_namespace,
            managed_identity_client_id=config.managed_identity_client_id,
        )

    @property
    def backend(self) -> str:
        return "servicebus"

    @property
    def is_connected(self) -> bool:
        return self.queue.is_connected

    async def connect(self) -> None:
        await self.queue.connect()

    async def close(self) -> None:
        await self.queue.close()

    async def publish(self, envelope: EventEnvelope) -> None:
        try:
            await self.queue.send(
                envelope.to_bus_body(),
                message_id=envelope.event_id,
                subject=envelope.name,
                properties={"source": envelope.source, "name": envelope.name},
            )
        except PERMANENT_SEND_ERRORS as e:
            logger.error(f"Event {envelope.event_id} rejected by Service Bus: {e}")
            raise TriggerDeliveryError(f"Service Bus rejected event: {type(e).__name__}: {e}")
        except (ServiceBusError, ValueError) as e:
            logger.warning(f"Event {envelope.event_id} not sent: {type(e).__name__}: {e}")
            raise TriggerDeliveryError(f"Service Bus unavailable: {type(e).__name__}: {e}")
        self._published += 1

    async def receive(self, max_wait: Optional[float] = None) -> Optional[Delivery]:
        wait = self.config.max_wait_seconds if max_wait is None else max_wait
        raw = await self.queue.receive_one(max_wait_time=wait)
        if raw is None:
            return None

        try:
            envelope = EventEnvelope.from_bus_body(str(raw))
        except PydanticValidationError as e:
            logger.error(f"Failed to parse event message {raw.message_id}: {e}")
            await self.queue.dead_letter(raw, reason="ParseError", description=str(e)[:1024])
            self._dead_lettered += 1
            return None

        self._received += 1
        return Delivery(
            envelope=envelope,
            delivery_count=raw.delivery_count or 1,
            lock_token=str(raw.lock_token),
            raw=raw,
        )

    async def ack(self, delivery: Delivery) -> None:
        delivery.settled = True
        try:
            await self.queue.complete(delivery.raw)
            self._acked += 1
        except MessageLockLostError:
            logger.warning(f"Lock lost for event {delivery.envelope.event_id}; it will be redelivered")

    async def abandon(self, delivery: Delivery) -> None:
        delivery.settled = True
        try:
            await self.queue.abandon(delivery.raw)
            self._abandoned += 1
        except MessageLockLostError:
            logger.warning(f"Lock lost for event {delivery.envelope.event_id}")

    async def dead_letter(self, delivery: Delivery, reason: str, description: str = "") -> None:
        delivery.settled = True
        try:
            await self.queue.dead_letter(delivery.raw, reason=reason, description=description)
            self._dead_lettered += 1
        except MessageLockLostError:
            logger.warning(f"Lock lost for event {delivery.envelope.event_id}")


# ============================================================================
# FACTORY
# ============================================================================

def create_event_bus(config: Optional[EventBusConfig] = None) -> EventBus:
    """Create the configured event bus backend."""
    config = config or EventBusConfig.from_env()
    if config.backend == BACKEND_SERVICEBUS:
        return ServiceBusEventBus(config)
    return InMemoryEventBus(config)


__all__ = [
    "Delivery",
    "DeadLetter",
    "EventBus",
    "InMemoryEventBus",
    "ServiceBusEventBus",
    "create_event_bus",
]
