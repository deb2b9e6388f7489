# ============================================================================
# RULE MATCHER
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Service - Event to DAG submission
# PURPOSE: Match queued events against trigger rules and submit DAGs
# CREATED: 16 OCT 2026
# ============================================================================
"""
Rule Matcher

Consumes events from the bus and submits one DAG instance per matching
rule.

Settlement of each delivery:
    no matching rule                         -> ack (logged)
    all matching rules submitted             -> ack
    unknown DAG / invalid DAG / bad binding  -> dead-letter (permanent)
    anything else                            -> abandon (redelivered)

There is no deduplication. A redelivered or repeated event submits new,
independent instances.
"""

import asyncio
import logging
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from core.errors import ValidationError
from core.logging import log_checkpoint, log_context
from core.models import EventEnvelope, TriggerInfo, TriggerRule
from messaging.bus import Delivery, EventBus
from orchestrator.engine.templates import TemplateResolutionError, resolve_bindings
from orchestrator.scheduler import DagScheduler
from services.definition_service import DefinitionService

logger = logging.getLogger(__name__)


class UnprocessableEventError(Exception):
    """An event that can never succeed; retrying it is pointless."""

    def __init__(self, reason: str, description: str):
        super().__init__(f"{reason}: {description}")
        self.reason = reason
        self.description = description


class RuleMatcher:
    """
    Immutable (source, event_name) -> rules table plus the submit logic.

    Args:
        rules: Trigger rules (order is kept per key)
        definitions: Where dag_ids are looked up
        scheduler: Where instances are submitted
    """

    def __init__(
        self,
        rules: Iterable[TriggerRule],
        definitions: DefinitionService,
        scheduler: DagScheduler,
    ):
        self.definitions = definitions
        self.scheduler = scheduler

        table: Dict[Tuple[str, str], List[TriggerRule]] = {}
        names = set()
        for rule in rules:
            if rule.name in names:
                raise ValueError(f"Duplicate trigger rule name: {rule.name}")
            names.add(rule.name)
            table.setdefault(rule.key, []).append(rule)
            if definitions.get(rule.dag_id) is None:
                logger.warning(f"Rule {rule.name} targets unknown DAG {rule.dag_id}")

        self._table: Mapping[Tuple[str, str], Tuple[TriggerRule, ...]] = MappingProxyType(
            {key: tuple(value) for key, value in table.items()}
        )

        self._matched = 0
        self._unmatched = 0
        self._submitted = 0
        self._unprocessable = 0
        self._last_event_at: Optional[datetime] = None

    @property
    def rules(self) -> List[TriggerRule]:
        return [rule for group in self._table.values() for rule in group]

    def match(self, source: str, name: str) -> Tuple[TriggerRule, ...]:
        return self._table.get((source, name), ())

    def bind_params(self, rule: TriggerRule, envelope: EventEnvelope) -> Dict[str, Any]:
        """
        Static rule params, overridden by bindings evaluated on the event.

        Raises:
            TemplateResolutionError: a binding references something absent
        """
        params = dict(rule.params)
        if rule.bindings:
            event = {
                "event_id": envelope.event_id,
                "source": envelope.source,
                "name": envelope.name,
                "received_at": envelope.received_at.isoformat(),
                "route": envelope.route,
            }
            params.update(resolve_bindings(rule.bindings, envelope.payload, event))
        return params

    async def handle_event(self, envelope: EventEnvelope) -> List[str]:
        """
        Submit one instance per matching rule.

        Returns:
            Instance ids submitted (empty when nothing matched)

        Raises:
            UnprocessableEventError: unknown DAG, invalid DAG or bad binding
        """
        self._last_event_at = datetime.utcnow()
        rules = self.match(envelope.source, envelope.name)
        if not rules:
            self._unmatched += 1
            logger.info(f"No rule for event {envelope.source}/{envelope.name}; dropping")
            return []

        self._matched += 1
        instance_ids = []
        for rule in rules:
            definition = self.definitions.get(rule.dag_id)
            if definition is None:
                self._unprocessable += 1
                raise UnprocessableEventError(
                    "UnknownDag", f"Rule {rule.name} targets unknown DAG {rule.dag_id}"
                )

            try:
                params = self.bind_params(rule, envelope)
                instance_id = await self.scheduler.submit(
                    definition,
                    params,
                    trigger=TriggerInfo(
                        event_id=envelope.event_id,
                        source=envelope.source,
                        name=envelope.name,
                        rule=rule.name,
                    ),
                )
            except TemplateResolutionError as e:
                self._unprocessable += 1
                raise UnprocessableEventError("BindingError", f"Rule {rule.name}: {e}")
            except ValidationError as e:
                self._unprocessable += 1
                raise UnprocessableEventError(type(e).__name__, f"Rule {rule.name}: {e}")

            self._submitted += 1
            instance_ids.append(instance_id)
            log_checkpoint("event_submitted", {"rule": rule.name, "instance_id": instance_id})

        return instance_ids

    async def on_event(self, source: str, name: str, payload: Dict[str, Any]) -> List[str]:
        """Match and submit an event that did not come through the bus."""
        envelope = EventEnvelope(source=source, name=name, payload=payload)
        with log_context(event_id=envelope.event_id):
            return await self.handle_event(envelope)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "rules": sum(len(group) for group in self._table.values()),
            "matched": self._matched,
            "unmatched": self._unmatched,
            "submitted": self._submitted,
            "unprocessable": self._unprocessable,
            "last_event_at": self._last_event_at.isoformat() if self._last_event_at else None,
        }


class TriggerConsumer:
    """
    Background loop feeding bus deliveries into a RuleMatcher.

    Usage:
        consumer = TriggerConsumer(bus, matcher)
        await consumer.start()
        ...
        await consumer.stop()
    """

    def __init__(self, bus: EventBus, matcher: RuleMatcher):
        self.bus = bus
        self.matcher = matcher
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._started_at: Optional[datetime] = None

    async def handle(self, envelope: EventEnvelope, delivery: Delivery) -> bool:
        """consume_loop handler: True acks, exceptions abandon."""
        with log_context(event_id=envelope.event_id):
            logger.debug(
                f"Delivery {delivery.delivery_count} of event {envelope.source}/{envelope.name}"
            )
            try:
                await self.matcher.handle_event(envelope)
            except UnprocessableEventError as e:
                logger.error(f"Event {envelope.event_id} cannot be processed: {e}")
                await self.bus.dead_letter(delivery, e.reason, e.description)
                return False
        return True

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Trigger consumer already running")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self.bus.consume_loop(self.handle, self._stop_event),
            name="trigger-consumer",
        )
        self._started_at = datetime.utcnow()
        logger.info("Trigger consumer started")

    async def stop(self, timeout: Optional[float] = None) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        wait = timeout if timeout is not None else self.bus.config.max_wait_seconds + 1.0
        try:
            await asyncio.wait_for(self._task, timeout=wait)
        except asyncio.TimeoutError:
            logger.warning("Trigger consumer did not stop in time, cancelled")
        self._task = None
        logger.info("Trigger consumer stopped")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "bus": self.bus.stats,
            "matcher": self.matcher.stats,
        }


__all__ = ["RuleMatcher", "TriggerConsumer", "UnprocessableEventError"]
