# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for DAG submission, instances, status and triggers
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the stage orchestrator.
"""

from .routes import router, set_services
from .trigger_routes import build_trigger_router
from .schemas import (
    SubmitRequest,
    SubmitResponse,
    InstanceResponse,
    TaskResponse,
)

__all__ = [
    "router",
    "set_services",
    "build_trigger_router",
    "SubmitRequest",
    "SubmitResponse",
    "InstanceResponse",
    "TaskResponse",
]
