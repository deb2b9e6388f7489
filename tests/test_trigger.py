# ============================================================================
# TRIGGER PATH TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - Listener, rule matcher and bus consumer
# PURPOSE: Verify event intake, rule binding and settlement decisions
# CREATED: 18 OCT 2026
# ============================================================================
"""
Trigger Path Tests

Covers:
1. TriggerListener shape checks and publishing (payload unmodified)
2. TriggerConfig parsing and duplicate detection
3. RuleMatcher: matching, static params + bindings, unprocessable events
4. TriggerConsumer: ack / dead-letter / abandon, and no deduplication

The scheduler is mocked (AsyncMock submit) so these tests only see which
submissions the trigger path makes.

Run with:
    pytest tests/test_trigger.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import CyclicGraphError, MalformedDefinitionError, TriggerDeliveryError
from core.models import EventEnvelope, TriggerRoute, TriggerRule
from messaging import EventBusConfig, InMemoryEventBus
from services import (
    DefinitionService,
    RuleMatcher,
    TriggerConsumer,
    TriggerListener,
    TriggerShapeError,
    UnprocessableEventError,
    load_trigger_config,
    parse_trigger_config,
)


# ============================================================================
# FIXTURES
# ============================================================================

SOURCE = "trading-event-source"
EVENT = "algo-order-book"


@pytest.fixture
def route():
    return TriggerRoute(
        name="order-book",
        path="/algo/order-book",
        source=SOURCE,
        event_name=EVENT,
        required_fields=["symbol"],
    )


@pytest.fixture
def bus():
    return InMemoryEventBus(EventBusConfig(max_wait_seconds=0.05, max_delivery_count=3))


@pytest.fixture
def definitions(tmp_path, make_dag, task):
    service = DefinitionService(str(tmp_path))
    service.register(make_dag([task("a")], dag_id="trading-system", params={"symbol": None, "depth": 10}))
    return service


@pytest.fixture
def scheduler():
    mock = MagicMock()
    counter = iter(range(1000))
    mock.submit = AsyncMock(side_effect=lambda *a, **kw: f"trading-system-{next(counter):05d}")
    return mock


def _rule(**overrides):
    values = {
        "name": "start-trading-system",
        "source": SOURCE,
        "event_name": EVENT,
        "dag_id": "trading-system",
        "bindings": {"symbol": "{{ payload.symbol }}"},
    }
    values.update(overrides)
    return TriggerRule(**values)


def _event(**payload):
    return EventEnvelope(source=SOURCE, name=EVENT, payload=payload, route="order-book")


# ============================================================================
# LISTENER
# ============================================================================

class TestTriggerListener:

    def test_accept_publishes_unmodified_payload(self, bus, route):
        listener = TriggerListener(bus)
        payload = {"symbol": "BTC-USD", "bids": [[100.1, 3]], "extra": {"nested": True}}

        async def run():
            envelope = await listener.accept(route, payload)
            delivery = await bus.receive()
            return envelope, delivery

        envelope, delivery = asyncio.run(run())
        assert envelope.payload == payload
        assert (envelope.source, envelope.name, envelope.route) == (SOURCE, EVENT, "order-book")
        assert delivery.envelope == envelope
        assert listener.stats["accepted"] == 1

    def test_missing_required_field(self, bus, route):
        listener = TriggerListener(bus)
        with pytest.raises(TriggerShapeError) as exc_info:
            asyncio.run(listener.accept(route, {"depth": 5}))
        assert exc_info.value.missing == ["symbol"]
        assert bus.depth == 0
        assert listener.stats["rejected"] == 1

    def test_non_object_body(self, bus, route):
        listener = TriggerListener(bus)
        with pytest.raises(TriggerShapeError) as exc_info:
            asyncio.run(listener.accept(route, ["BTC-USD"]))
        assert exc_info.value.missing is None

    def test_bus_refusal_surfaces(self, route):
        bus = InMemoryEventBus(EventBusConfig(capacity=0))
        listener = TriggerListener(bus)
        with pytest.raises(TriggerDeliveryError):
            asyncio.run(listener.accept(route, {"symbol": "BTC-USD"}))
        assert listener.stats["delivery_failures"] == 1

    def test_route_method_normalized(self):
        route = TriggerRoute(name="r", path="/r", method="put", source="s", event_name="e")
        assert route.method == "PUT"

    def test_route_rejects_get(self):
        with pytest.raises(ValueError):
            TriggerRoute(name="r", path="/r", method="GET", source="s", event_name="e")


# ============================================================================
# TRIGGER CONFIG
# ============================================================================

class TestTriggerConfig:

    def test_parse(self):
        config = parse_trigger_config({
            "routes": [{"name": "order-book", "path": "/algo/order-book", "source": SOURCE, "event_name": EVENT}],
            "rules": [{"name": "r1", "source": SOURCE, "event_name": EVENT, "dag_id": "trading-system"}],
        })
        assert config.get_route("order-book").path == "/algo/order-book"
        assert config.rules[0].key == (SOURCE, EVENT)

    def test_empty_document(self):
        config = parse_trigger_config(None)
        assert config.routes == [] and config.rules == []

    def test_duplicate_route_path(self):
        with pytest.raises(MalformedDefinitionError, match="Duplicate route path"):
            parse_trigger_config({"routes": [
                {"name": "a", "path": "/x", "source": "s", "event_name": "e"},
                {"name": "b", "path": "/x", "source": "s", "event_name": "e"},
            ]})

    def test_duplicate_rule_name(self):
        rule = {"name": "r1", "source": "s", "event_name": "e", "dag_id": "d"}
        with pytest.raises(MalformedDefinitionError, match="Duplicate rule name"):
            parse_trigger_config({"rules": [rule, rule]})

    def test_invalid_entry(self):
        with pytest.raises(MalformedDefinitionError):
            parse_trigger_config({"routes": [{"name": "no-path"}]})

    def test_missing_file_is_empty(self, tmp_path):
        config = load_trigger_config(str(tmp_path / "nope.yaml"))
        assert config.routes == []

    def test_load_file(self, tmp_path):
        path = tmp_path / "triggers.yaml"
        path.write_text(
            "routes:\n"
            "  - name: order-book\n"
            "    path: /algo/order-book\n"
            f"    source: {SOURCE}\n"
            f"    event_name: {EVENT}\n"
            "rules:\n"
            "  - name: start\n"
            f"    source: {SOURCE}\n"
            f"    event_name: {EVENT}\n"
            "    dag_id: trading-system\n"
        )
        config = load_trigger_config(str(path))
        assert len(config.routes) == 1
        assert config.rules[0].dag_id == "trading-system"


# ============================================================================
# RULE MATCHER
# ============================================================================

class TestRuleMatcher:

    def test_match_and_submit(self, definitions, scheduler):
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        ids = asyncio.run(matcher.handle_event(_event(symbol="ETH-USD")))

        assert ids == ["trading-system-00000"]
        definition, params = scheduler.submit.call_args.args
        assert definition.dag_id == "trading-system"
        assert params == {"symbol": "ETH-USD"}
        trigger = scheduler.submit.call_args.kwargs["trigger"]
        assert trigger.rule == "start-trading-system"

    def test_unmatched_event_submits_nothing(self, definitions, scheduler):
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        ids = asyncio.run(matcher.handle_event(EventEnvelope(source=SOURCE, name="other")))
        assert ids == []
        scheduler.submit.assert_not_called()
        assert matcher.stats["unmatched"] == 1

    def test_bindings_override_static_params(self, definitions, scheduler):
        rule = _rule(params={"symbol": "BTC-USD", "depth": 5}, bindings={"symbol": "{{ payload.ticker }}"})
        matcher = RuleMatcher([rule], definitions, scheduler)
        params = matcher.bind_params(rule, _event(ticker="SOL-USD"))
        assert params == {"symbol": "SOL-USD", "depth": 5}

    def test_event_fields_available_to_bindings(self, definitions, scheduler):
        rule = _rule(bindings={"symbol": "{{ payload.symbol }}", "origin": "{{ event.route }}"})
        matcher = RuleMatcher([rule], definitions, scheduler)
        assert matcher.bind_params(rule, _event(symbol="X"))["origin"] == "order-book"

    def test_every_matching_rule_submits(self, definitions, scheduler):
        rules = [_rule(name="first"), _rule(name="second")]
        matcher = RuleMatcher(rules, definitions, scheduler)
        ids = asyncio.run(matcher.handle_event(_event(symbol="BTC-USD")))
        assert len(ids) == 2
        assert [c.kwargs["trigger"].rule for c in scheduler.submit.call_args_list] == ["first", "second"]

    def test_unknown_dag_is_unprocessable(self, definitions, scheduler):
        matcher = RuleMatcher([_rule(dag_id="ghost")], definitions, scheduler)
        with pytest.raises(UnprocessableEventError) as exc_info:
            asyncio.run(matcher.handle_event(_event(symbol="BTC-USD")))
        assert exc_info.value.reason == "UnknownDag"

    def test_binding_error_is_unprocessable(self, definitions, scheduler):
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        with pytest.raises(UnprocessableEventError) as exc_info:
            asyncio.run(matcher.handle_event(_event(depth=3)))
        assert exc_info.value.reason == "BindingError"
        scheduler.submit.assert_not_called()

    def test_rejected_submission_is_unprocessable(self, definitions, scheduler):
        scheduler.submit.side_effect = CyclicGraphError(["a", "a"])
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        with pytest.raises(UnprocessableEventError) as exc_info:
            asyncio.run(matcher.handle_event(_event(symbol="BTC-USD")))
        assert exc_info.value.reason == "CyclicGraphError"

    def test_duplicate_rule_names_rejected(self, definitions, scheduler):
        with pytest.raises(ValueError, match="Duplicate trigger rule name"):
            RuleMatcher([_rule(), _rule()], definitions, scheduler)

    def test_rule_table_is_read_only(self, definitions, scheduler):
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        with pytest.raises(TypeError):
            matcher._table[("x", "y")] = ()

    def test_on_event(self, definitions, scheduler):
        matcher = RuleMatcher([_rule()], definitions, scheduler)
        ids = asyncio.run(matcher.on_event(SOURCE, EVENT, {"symbol": "BTC-USD"}))
        assert len(ids) == 1


# ============================================================================
# CONSUMER
# ============================================================================

class TestTriggerConsumer:

    def _deliver(self, bus, consumer, envelope):
        async def run():
            await bus.publish(envelope)
            delivery = await bus.receive()
            return await consumer.handle(envelope, delivery), delivery
        return asyncio.run(run())

    def test_submitted_event_acks(self, bus, definitions, scheduler):
        consumer = TriggerConsumer(bus, RuleMatcher([_rule()], definitions, scheduler))
        ok, delivery = self._deliver(bus, consumer, _event(symbol="BTC-USD"))
        assert ok is True
        assert not delivery.settled

    def test_unmatched_event_acks(self, bus, definitions, scheduler):
        consumer = TriggerConsumer(bus, RuleMatcher([], definitions, scheduler))
        ok, _ = self._deliver(bus, consumer, _event(symbol="BTC-USD"))
        assert ok is True

    def test_unprocessable_event_dead_lettered(self, bus, definitions, scheduler):
        consumer = TriggerConsumer(bus, RuleMatcher([_rule(dag_id="ghost")], definitions, scheduler))
        ok, delivery = self._deliver(bus, consumer, _event(symbol="BTC-USD"))
        assert ok is False
        assert delivery.settled
        assert bus.dead_letters[0].reason == "UnknownDag"

    def test_binding_expression_error_dead_lettered(self, bus, definitions, scheduler):
        rule = _rule(bindings={"symbol": "{{ payload.symbol }}", "depth": "{{ payload.depth * 2 + 1 }}"})
        consumer = TriggerConsumer(bus, RuleMatcher([rule], definitions, scheduler))
        ok, delivery = self._deliver(bus, consumer, _event(symbol="BTC-USD", depth="deep"))
        assert ok is False
        assert delivery.settled
        assert bus.dead_letters[0].reason == "BindingError"
        scheduler.submit.assert_not_called()

    def test_transient_error_propagates_for_abandon(self, bus, definitions, scheduler):
        scheduler.submit.side_effect = RuntimeError("substrate unavailable")
        consumer = TriggerConsumer(bus, RuleMatcher([_rule()], definitions, scheduler))
        with pytest.raises(RuntimeError):
            self._deliver(bus, consumer, _event(symbol="BTC-USD"))

    def test_running_consumer_submits_duplicates(self, bus, definitions, scheduler):
        """The same event published twice submits two independent instances."""
        consumer = TriggerConsumer(bus, RuleMatcher([_rule()], definitions, scheduler))
        event = _event(symbol="BTC-USD")

        async def run():
            await consumer.start()
            assert consumer.is_running
            await bus.publish(event)
            await bus.publish(event)
            for _ in range(200):
                if scheduler.submit.call_count >= 2:
                    break
                await asyncio.sleep(0.01)
            await consumer.stop()

        asyncio.run(run())
        assert scheduler.submit.call_count == 2
        event_ids = {c.kwargs["trigger"].event_id for c in scheduler.submit.call_args_list}
        assert event_ids == {event.event_id}
        assert not consumer.is_running
        assert consumer.stats["bus"]["acked"] == 2

    def test_transient_failure_redelivered_then_submitted(self, bus, definitions, scheduler):
        outcomes = [RuntimeError("busy"), "trading-system-00001"]
        scheduler.submit.side_effect = outcomes
        consumer = TriggerConsumer(bus, RuleMatcher([_rule()], definitions, scheduler))

        async def run():
            await consumer.start()
            await bus.publish(_event(symbol="BTC-USD"))
            for _ in range(200):
                if bus.stats["acked"] == 1:
                    break
                await asyncio.sleep(0.01)
            await consumer.stop()

        asyncio.run(run())
        assert scheduler.submit.call_count == 2
        assert bus.stats["abandoned"] == 1
        assert bus.dead_letters == []
