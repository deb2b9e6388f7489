# ============================================================================
# STAGE ORCHESTRATOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - FastAPI application entry point
# PURPOSE: Wire substrate, scheduler, event bus and routes into one app
# CREATED: 17 OCT 2026
# ============================================================================
"""
Stage Orchestrator Main Application

FastAPI application that:
1. Accepts trigger events on the configured routes and queues them
2. Consumes queued events and submits the matching DAGs
3. Provides the HTTP API for DAG instances and status
4. Optionally logs a status table on a fixed cadence (MONITOR_ENABLED)

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE, EPOCH
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_defaults
from infrastructure import LocalProcessSubstrate
from messaging import create_event_bus
from orchestrator import DagScheduler
from services import (
    DefinitionService,
    RuleMatcher,
    StatusMonitor,
    TriggerConsumer,
    TriggerListener,
    load_trigger_config,
    render_snapshot,
)
from api.routes import router, set_services
from api.trigger_routes import build_trigger_router

# Health check system
from health import health_router, get_registry
from health.checks import (
    set_definition_service,
    set_event_bus,
    set_scheduler,
    set_substrate,
    set_trigger_consumer,
)

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build the application.

    Trigger routes come from TRIGGERS_FILE, so they are mounted here rather
    than declared statically. Connections and background loops are opened
    in the lifespan handler.
    """
    trigger_config = load_trigger_config()
    bus = create_event_bus()
    listener = TriggerListener(bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Initializes services on startup, cleans up on shutdown.
        """
        logger.info(f"Starting Stage Orchestrator v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")
        defaults = get_defaults()

        substrate = LocalProcessSubstrate.from_env()
        scheduler = DagScheduler(substrate, config=defaults.scheduler)

        definitions = DefinitionService(defaults.triggers.dags_dir)
        count = definitions.load_all()
        logger.info(f"Loaded {count} DAGs")

        await bus.connect()
        matcher = RuleMatcher(trigger_config.rules, definitions, scheduler)
        consumer = TriggerConsumer(bus, matcher)
        monitor = StatusMonitor(scheduler, substrate, defaults.monitor)

        set_services(
            scheduler=scheduler,
            definition_service=definitions,
            status_monitor=monitor,
            trigger_consumer=consumer,
            trigger_config=trigger_config,
            trigger_listener=listener,
        )

        await scheduler.start()
        await consumer.start()
        logger.info("Scheduler and trigger consumer started")

        monitor_stop = asyncio.Event()
        monitor_task: Optional[asyncio.Task] = None
        if defaults.monitor.enabled:
            monitor_task = asyncio.create_task(
                monitor.run(lambda snapshot: logger.info("\n" + render_snapshot(snapshot)), monitor_stop),
                name="status-monitor",
            )

        # Initialize health checks
        set_substrate(substrate)
        set_event_bus(bus)
        set_scheduler(scheduler)
        set_definition_service(definitions)
        set_trigger_consumer(consumer)
        get_registry().mark_initialized()
        logger.info(f"Health checks initialized ({len(get_registry())} checks registered)")

        yield

        # Shutdown
        logger.info("Shutting down Stage Orchestrator...")

        if monitor_task is not None:
            monitor_stop.set()
            await monitor_task
        await consumer.stop()
        await scheduler.stop()
        await substrate.shutdown()
        await bus.close()

        logger.info("Stage Orchestrator stopped")

    app = FastAPI(
        title="Stage Orchestrator",
        description=f"Epoch {EPOCH} orchestration of datagram pipeline stages",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include health check routes (no prefix - /livez, /readyz, /health)
    app.include_router(health_router)

    # Include API routes
    app.include_router(router, prefix="/api/v1")

    # Include configured trigger routes (paths as written in TRIGGERS_FILE)
    app.include_router(build_trigger_router(trigger_config.routes, listener))

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Stage Orchestrator",
            "version": __version__,
            "epoch": EPOCH,
            "build_date": BUILD_DATE,
            "status": "running",
            "docs": "/docs",
            "triggers": [f"{r.method} {r.path}" for r in trigger_config.routes],
        }

    return app


# Create FastAPI app
app = create_app()


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
