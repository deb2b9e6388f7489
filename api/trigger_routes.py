# ============================================================================
# TRIGGER ROUTES
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Configured inbound event endpoints
# PURPOSE: Mount one FastAPI route per configured trigger route
# CREATED: 17 OCT 2026
# ============================================================================
"""
Trigger Routes

Paths and methods come from the trigger config, so the router is built
at startup rather than declared with decorators.

Responses:
    202 {"event_id": ...}  event queued
    400                     body is not a JSON object
    422                     required fields missing
    503                     event bus refused the event
"""

import json
import logging
from typing import Iterable

from fastapi import APIRouter, HTTPException, Request

from core.errors import TriggerDeliveryError
from core.models import TriggerRoute
from services.trigger_listener import TriggerListener, TriggerShapeError

logger = logging.getLogger(__name__)


def _make_endpoint(route: TriggerRoute, listener: TriggerListener):
    async def endpoint(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw) if raw else None
        except ValueError:
            raise HTTPException(400, f"Route {route.name} expects a JSON object body")

        try:
            envelope = await listener.accept(route, payload)
        except TriggerShapeError as e:
            raise HTTPException(400 if e.missing is None else 422, str(e))
        except TriggerDeliveryError as e:
            raise HTTPException(503, f"Event not queued: {e}")

        return {
            "event_id": envelope.event_id,
            "source": envelope.source,
            "name": envelope.name,
            "status": "queued",
        }

    endpoint.__name__ = f"trigger_{route.name.replace('-', '_')}"
    return endpoint


def build_trigger_router(routes: Iterable[TriggerRoute], listener: TriggerListener) -> APIRouter:
    """One endpoint per configured route, all answering 202 once queued."""
    router = APIRouter()
    for route in routes:
        router.add_api_route(
            route.path,
            _make_endpoint(route, listener),
            methods=[route.method],
            status_code=202,
            tags=["Triggers"],
            summary=f"{route.source}/{route.event_name}",
            name=f"trigger:{route.name}",
        )
        logger.info(f"Mounted trigger route {route.method} {route.path} -> {route.source}/{route.event_name}")
    return router


__all__ = ["build_trigger_router"]
