# ============================================================================
# API ROUTE TESTS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tests - HTTP surface
# PURPOSE: Verify status codes, error mapping and trigger intake over HTTP
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Route Tests

Uses FastAPI's TestClient. Tests that need the scheduler's background
tasks to keep running use the client as a context manager so every
request shares one event loop.

Run with:
    pytest tests/test_routes.py -v
"""

import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api import build_trigger_router, router, set_services
from core.config import MonitorDefaults
from core.errors import InstanceActiveError, InstanceNotFoundError
from core.models import TriggerRoute
from messaging import EventBusConfig, InMemoryEventBus
from orchestrator.scheduler import DagScheduler
from services import DefinitionService, StatusMonitor, TriggerListener, parse_trigger_config


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_services():
    yield
    set_services(None, None)


@pytest.fixture
def definitions(tmp_path, make_dag, task):
    service = DefinitionService(str(tmp_path))
    service.register(make_dag(
        [task("market-streamer", port=8888), task("order-book-algo", ["market-streamer"])],
        dag_id="trading-system",
        params={"symbol": "BTC-USD"},
    ))
    return service


@pytest.fixture
def app():
    application = FastAPI()
    application.include_router(router, prefix="/api/v1")
    return application


@pytest.fixture
def live_client(app, substrate, definitions):
    """Real scheduler on the fake substrate, one event loop for the whole test."""
    scheduler = DagScheduler(substrate)
    monitor = StatusMonitor(scheduler, substrate, MonitorDefaults())
    set_services(scheduler, definitions, status_monitor=monitor)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def mock_scheduler(app, definitions):
    scheduler = MagicMock()
    scheduler.submit = AsyncMock(return_value="trading-system-abcde")
    scheduler.cancel = AsyncMock()
    scheduler.reclaim = AsyncMock()
    set_services(scheduler, definitions)
    return scheduler


def _wait_for_status(client, instance_id, status, timeout=3.0):
    deadline = time.monotonic() + timeout
    body = None
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/instances/{instance_id}").json()
        if body["status"] == status:
            return body
        time.sleep(0.02)
    raise AssertionError(f"{instance_id} never reached {status}: {body}")


# ============================================================================
# SUBMISSION
# ============================================================================

class TestSubmit:

    def test_submit_loaded_dag_runs_to_success(self, live_client):
        response = live_client.post("/api/v1/instances", json={"dag_id": "trading-system"})
        assert response.status_code == 201
        body = response.json()
        assert body["dag_id"] == "trading-system"
        assert body["instance_id"].startswith("trading-system-")

        instance = _wait_for_status(live_client, body["instance_id"], "succeeded")
        assert instance["task_summary"] == {"ready": 2}
        assert instance["params"] == {"symbol": "BTC-USD"}

    def test_submit_inline_definition(self, live_client, task):
        response = live_client.post("/api/v1/instances", json={
            "definition": {"dag_id": "inline", "tasks": [task("solo")]},
        })
        assert response.status_code == 201
        _wait_for_status(live_client, response.json()["instance_id"], "succeeded")

    def test_submit_inline_yaml(self, live_client):
        document = (
            "dag_id: inline-yaml\n"
            "tasks:\n"
            "  - name: solo\n"
            "    command: [python3, solo.py]\n"
            "    startup_window_seconds: 0\n"
        )
        response = live_client.post("/api/v1/instances", json={"definition_yaml": document})
        assert response.status_code == 201

    def test_unknown_dag_is_404(self, mock_scheduler, app):
        response = TestClient(app).post("/api/v1/instances", json={"dag_id": "ghost"})
        assert response.status_code == 404
        assert "DAG not found: ghost" in response.json()["detail"]
        mock_scheduler.submit.assert_not_called()

    def test_cyclic_inline_definition_is_400(self, mock_scheduler, app, task):
        response = TestClient(app).post("/api/v1/instances", json={
            "definition": {"dag_id": "loop", "tasks": [task("a", ["b"]), task("b", ["a"])]},
        })
        assert response.status_code == 400
        assert "Cycle detected" in response.json()["detail"]
        mock_scheduler.submit.assert_not_called()

    def test_two_sources_rejected(self, mock_scheduler, app):
        response = TestClient(app).post("/api/v1/instances", json={
            "dag_id": "trading-system",
            "definition_yaml": "dag_id: x",
        })
        assert response.status_code == 422

    def test_missing_required_param_is_400(self, live_client, task):
        response = live_client.post("/api/v1/instances", json={
            "definition": {"dag_id": "needs", "params": {"symbol": None}, "tasks": [task("a")]},
        })
        assert response.status_code == 400
        assert "symbol" in response.json()["detail"]


# ============================================================================
# INSTANCES
# ============================================================================

class TestInstances:

    def test_unknown_instance_is_404(self, live_client):
        assert live_client.get("/api/v1/instances/ghost-00000").status_code == 404
        assert live_client.get("/api/v1/instances/ghost-00000/transitions").status_code == 404
        assert live_client.post("/api/v1/instances/ghost-00000/cancel").status_code == 404
        assert live_client.delete("/api/v1/instances/ghost-00000").status_code == 404

    def test_reclaim_active_is_409(self, mock_scheduler, app):
        mock_scheduler.reclaim.side_effect = InstanceActiveError("trading-system-abcde")
        response = TestClient(app).delete("/api/v1/instances/trading-system-abcde")
        assert response.status_code == 409
        assert response.json()["detail"].endswith("cancel it first")

    def test_cancel_unknown_via_mock(self, mock_scheduler, app):
        mock_scheduler.cancel.side_effect = InstanceNotFoundError("x")
        assert TestClient(app).post("/api/v1/instances/x/cancel").status_code == 404

    def test_transitions_logs_and_reclaim(self, live_client, substrate):
        substrate.output["market-streamer"] = ["tick 1", "tick 2"]
        instance_id = live_client.post("/api/v1/instances", json={"dag_id": "trading-system"}).json()["instance_id"]
        _wait_for_status(live_client, instance_id, "succeeded")

        transitions = live_client.get(f"/api/v1/instances/{instance_id}/transitions?limit=2").json()
        assert len(transitions["transitions"]) == 2

        logs = live_client.get(f"/api/v1/instances/{instance_id}/tasks/market-streamer/logs?since=1").json()
        assert logs["lines"] == ["tick 2"]
        assert logs["cursor"] == 2
        missing = live_client.get(f"/api/v1/instances/{instance_id}/tasks/nope/logs")
        assert missing.status_code == 404

        response = live_client.delete(f"/api/v1/instances/{instance_id}")
        assert response.json() == {"instance_id": instance_id, "reclaimed": True}
        assert live_client.get(f"/api/v1/instances/{instance_id}").status_code == 404
        assert instance_id in substrate.forgotten

    def test_list_and_tasks(self, live_client):
        instance_id = live_client.post("/api/v1/instances", json={"dag_id": "trading-system"}).json()["instance_id"]
        _wait_for_status(live_client, instance_id, "succeeded")

        listing = live_client.get("/api/v1/instances?status=succeeded").json()
        assert [i["instance_id"] for i in listing["instances"]] == [instance_id]
        assert live_client.get("/api/v1/instances?status=running").json()["total"] == 0

        tasks = live_client.get(f"/api/v1/instances/{instance_id}/tasks").json()
        assert [t["name"] for t in tasks] == ["market-streamer", "order-book-algo"]
        assert tasks[1]["depends_on"] == ["market-streamer"]

    def test_scheduler_status(self, live_client):
        body = live_client.get("/api/v1/scheduler/status").json()
        assert body["dependency_gate"] == "ready"
        assert body["metrics"]["submitted"] == 0


# ============================================================================
# DAGS AND STATUS
# ============================================================================

class TestDagsAndStatus:

    def test_list_and_get_dag(self, live_client):
        listing = live_client.get("/api/v1/dags").json()
        assert listing["total"] == 1
        dag = live_client.get("/api/v1/dags/trading-system").json()
        assert dag["edges"] == {"market-streamer": [], "order-book-algo": ["market-streamer"]}
        assert live_client.get("/api/v1/dags/ghost").status_code == 404

    def test_status_reports_unknown_ids(self, live_client):
        instance_id = live_client.post("/api/v1/instances", json={"dag_id": "trading-system"}).json()["instance_id"]
        _wait_for_status(live_client, instance_id, "succeeded")

        body = live_client.get(
            "/api/v1/status", params=[("instance_id", instance_id), ("instance_id", "ghost-00000")]
        ).json()
        assert body["counts"] == {"succeeded": 1, "unknown": 1}
        assert [v["status"] for v in body["instances"]] == ["succeeded", "unknown"]

    def test_status_text(self, live_client):
        response = live_client.get("/api/v1/status/text")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "No instances." in response.text


# ============================================================================
# TRIGGER ROUTES
# ============================================================================

class TestTriggerRoutes:

    @pytest.fixture
    def route(self):
        return TriggerRoute(
            name="order-book",
            path="/algo/order-book",
            source="trading-event-source",
            event_name="algo-order-book",
            required_fields=["symbol"],
        )

    def _client(self, route, bus):
        application = FastAPI()
        application.include_router(build_trigger_router([route], TriggerListener(bus)))
        return TestClient(application)

    def test_accepted_event_is_queued(self, route):
        bus = InMemoryEventBus(EventBusConfig())
        response = self._client(route, bus).post("/algo/order-book", json={"symbol": "BTC-USD"})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert body["source"] == "trading-event-source"
        assert bus.depth == 1

    def test_non_object_body_is_400(self, route):
        bus = InMemoryEventBus(EventBusConfig())
        client = self._client(route, bus)
        assert client.post("/algo/order-book", content=b"not json").status_code == 400
        assert client.post("/algo/order-book", json=["BTC-USD"]).status_code == 400
        assert bus.depth == 0

    def test_missing_field_is_422(self, route):
        bus = InMemoryEventBus(EventBusConfig())
        response = self._client(route, bus).post("/algo/order-book", json={"depth": 5})
        assert response.status_code == 422
        assert "symbol" in response.json()["detail"]

    def test_full_bus_is_503(self, route):
        bus = InMemoryEventBus(EventBusConfig(capacity=0))
        response = self._client(route, bus).post("/algo/order-book", json={"symbol": "BTC-USD"})
        assert response.status_code == 503

    def test_wrong_method_not_allowed(self, route):
        bus = InMemoryEventBus(EventBusConfig())
        assert self._client(route, bus).get("/algo/order-book").status_code == 405

    def test_triggers_listing(self, app, mock_scheduler, definitions):
        config = parse_trigger_config({
            "routes": [{"name": "order-book", "path": "/algo/order-book",
                        "source": "trading-event-source", "event_name": "algo-order-book"}],
        })
        set_services(mock_scheduler, definitions, trigger_config=config)
        body = TestClient(app).get("/api/v1/triggers").json()
        assert [r["name"] for r in body["routes"]] == ["order-book"]
        assert body["rules"] == []
        assert body["consumer"] is None
