# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for DAG submission, instances and status
# CREATED: 17 OCT 2026
# ============================================================================
"""
API Routes

FastAPI routes for the stage orchestrator. Mounted under /api/v1.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from core.contracts import InstanceStatus
from core.errors import InstanceActiveError, InstanceNotFoundError, ValidationError
from services.definition_service import parse_definition, parse_definition_yaml
from services.status_monitor import render_snapshot
from .schemas import (
    CancelRequest,
    DagListResponse,
    DagResponse,
    ErrorResponse,
    InstanceListResponse,
    InstanceResponse,
    SubmitRequest,
    SubmitResponse,
    TaskLogsResponse,
    TaskResponse,
    TransitionListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_scheduler = None
_definition_service = None
_status_monitor = None
_trigger_consumer = None
_trigger_config = None
_trigger_listener = None


def set_services(
    scheduler,
    definition_service,
    status_monitor=None,
    trigger_consumer=None,
    trigger_config=None,
    trigger_listener=None,
):
    """Set service instances for dependency injection."""
    global _scheduler, _definition_service, _status_monitor
    global _trigger_consumer, _trigger_config, _trigger_listener
    _scheduler = scheduler
    _definition_service = definition_service
    _status_monitor = status_monitor
    _trigger_consumer = trigger_consumer
    _trigger_config = trigger_config
    _trigger_listener = trigger_listener


def get_scheduler():
    if _scheduler is None:
        raise HTTPException(500, "Scheduler not initialized")
    return _scheduler


def get_definition_service():
    if _definition_service is None:
        raise HTTPException(500, "Services not initialized")
    return _definition_service


def get_status_monitor():
    if _status_monitor is None:
        raise HTTPException(500, "Status monitor not initialized")
    return _status_monitor


# ============================================================================
# HEALTH
# ============================================================================
# NOTE: Health checks are handled by the health module.
# See: /livez, /readyz, /health (root level, not under /api/v1)
# ============================================================================


# ============================================================================
# SCHEDULER STATUS
# ============================================================================

@router.get("/scheduler/status", tags=["Scheduler"])
async def get_scheduler_status():
    """
    Get scheduler status and statistics.

    Returns:
    - Running state and uptime
    - Dependency gate in use
    - Instance counters (submitted, rejected, succeeded, failed, cancelled, reclaimed)
    """
    stats = get_scheduler().stats

    return {
        "status": "running" if stats["running"] else "stopped",
        "started_at": stats["started_at"],
        "uptime_seconds": stats["uptime_seconds"],
        "dependency_gate": stats["dependency_gate"],
        "archive_retention_seconds": stats["archive_retention_seconds"],
        "metrics": {
            "instances": stats["instances"],
            "active_instances": stats["active_instances"],
            "submitted": stats["submitted"],
            "rejected": stats["rejected"],
            "succeeded": stats["succeeded"],
            "failed": stats["failed"],
            "cancelled": stats["cancelled"],
            "reclaimed": stats["reclaimed"],
            "transitions": stats["transitions"],
        },
    }


# ============================================================================
# DAGS
# ============================================================================

@router.get("/dags", response_model=DagListResponse, tags=["DAGs"])
async def list_dags():
    """
    List loaded DAG definitions.
    """
    service = get_definition_service()
    dags = [DagResponse.from_definition(d) for d in service.list_all()]
    return DagListResponse(dags=dags, total=len(dags))


@router.get(
    "/dags/{dag_id}",
    response_model=DagResponse,
    tags=["DAGs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_dag(dag_id: str):
    """
    Get a DAG definition.
    """
    definition = get_definition_service().get(dag_id)
    if definition is None:
        raise HTTPException(404, f"DAG not found: {dag_id}")
    return DagResponse.from_definition(definition)


# ============================================================================
# INSTANCES
# ============================================================================

@router.post(
    "/instances",
    response_model=SubmitResponse,
    status_code=201,
    tags=["Instances"],
    responses={
        201: {"description": "Instance started"},
        400: {"model": ErrorResponse, "description": "Invalid DAG or parameters"},
        404: {"model": ErrorResponse, "description": "DAG not found"},
    },
)
async def submit_instance(request: SubmitRequest):
    """
    Start a new DAG instance.

    Validation (graph, parameters, templates) happens before anything is
    launched; a rejected submission starts nothing. Returns immediately
    with the instance id. Poll GET /instances/{instance_id} to monitor it.
    """
    scheduler = get_scheduler()
    service = get_definition_service()

    try:
        if request.dag_id is not None:
            definition = service.get_or_raise(request.dag_id)
        elif request.definition is not None:
            definition = parse_definition(request.definition)
        else:
            definition = parse_definition_yaml(request.definition_yaml)

        instance_id = await scheduler.submit(definition, request.params)

    except KeyError as e:
        raise HTTPException(404, e.args[0] if e.args else f"DAG not found: {request.dag_id}")
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.exception(f"Error submitting instance: {e}")
        raise HTTPException(500, str(e))

    logger.info(f"Submitted instance {instance_id} of {definition.dag_id}")
    return SubmitResponse(instance_id=instance_id, dag_id=definition.dag_id)


@router.get("/instances", response_model=InstanceListResponse, tags=["Instances"])
async def list_instances(
    status: Optional[InstanceStatus] = Query(None, description="Filter by status"),
    dag_id: Optional[str] = Query(None, description="Filter by DAG"),
    include_archived: bool = Query(True, description="Include finished instances"),
    limit: int = Query(100, ge=1, le=1000),
):
    """
    List instances, newest first.
    """
    instances = get_scheduler().list_instances(include_archived=include_archived)
    if status:
        instances = [i for i in instances if i.status == status]
    if dag_id:
        instances = [i for i in instances if i.dag_id == dag_id]
    instances.sort(key=lambda i: i.created_at, reverse=True)
    instances = instances[:limit]

    return InstanceListResponse(
        instances=[InstanceResponse.from_instance(i) for i in instances],
        total=len(instances),
    )


@router.get(
    "/instances/{instance_id}",
    response_model=InstanceResponse,
    tags=["Instances"],
    responses={404: {"model": ErrorResponse}},
)
async def get_instance(instance_id: str):
    """
    Get instance details with task states.
    """
    try:
        instance = get_scheduler().get_instance(instance_id)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    return InstanceResponse.from_instance(instance)


@router.get(
    "/instances/{instance_id}/tasks",
    response_model=List[TaskResponse],
    tags=["Instances"],
    responses={404: {"model": ErrorResponse}},
)
async def get_instance_tasks(instance_id: str):
    """
    Get the task states of an instance.
    """
    try:
        instance = get_scheduler().get_instance(instance_id)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    return [TaskResponse.from_record(r) for r in instance.tasks.values()]


@router.get(
    "/instances/{instance_id}/transitions",
    response_model=TransitionListResponse,
    tags=["Instances"],
    responses={404: {"model": ErrorResponse}},
)
async def get_instance_transitions(
    instance_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Most recent N only"),
):
    """
    Get the task transition history of an instance (oldest first).
    """
    try:
        transitions = get_scheduler().transitions(instance_id, limit)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    return TransitionListResponse(instance_id=instance_id, transitions=transitions)


@router.get(
    "/instances/{instance_id}/tasks/{task}/logs",
    response_model=TaskLogsResponse,
    tags=["Instances"],
    responses={404: {"model": ErrorResponse}},
)
async def get_task_logs(
    instance_id: str,
    task: str,
    since: int = Query(0, ge=0, description="Cursor from a previous call"),
):
    """
    Get captured stage output.

    Returns the lines after cursor 'since' and the next cursor to pass back.
    """
    try:
        lines, cursor = get_scheduler().task_output(instance_id, task, since)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    except KeyError as e:
        raise HTTPException(404, e.args[0] if e.args else f"Task not found: {task}")
    return TaskLogsResponse(instance_id=instance_id, task=task, lines=lines, cursor=cursor)


@router.post(
    "/instances/{instance_id}/cancel",
    response_model=InstanceResponse,
    tags=["Instances"],
    responses={404: {"model": ErrorResponse}},
)
async def cancel_instance(instance_id: str, request: Optional[CancelRequest] = None):
    """
    Cancel an instance.

    Stops every in-flight task, fails unfinished tasks and terminates the
    instance's stages. Cancelling a finished instance changes nothing.
    """
    reason = request.reason if request else "cancelled"
    try:
        instance = await get_scheduler().cancel(instance_id, reason=reason)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    return InstanceResponse.from_instance(instance)


@router.delete(
    "/instances/{instance_id}",
    tags=["Instances"],
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Instance still active"},
    },
)
async def reclaim_instance(instance_id: str):
    """
    Reclaim a finished instance.

    Terminates any leftover stages and forgets the instance. Later queries
    return 404 and the status view reports it as unknown.
    """
    try:
        await get_scheduler().reclaim(instance_id)
    except InstanceNotFoundError as e:
        raise HTTPException(404, str(e))
    except InstanceActiveError as e:
        raise HTTPException(409, f"{e}; cancel it first")
    return {"instance_id": instance_id, "reclaimed": True}


# ============================================================================
# STATUS
# ============================================================================

@router.get("/status", tags=["Status"])
async def get_status(
    instance_id: Optional[List[str]] = Query(None, description="Only these instances"),
):
    """
    Status snapshot of instances, tasks and stage processes.

    Requested ids that no longer exist are reported with status "unknown".
    """
    snapshot = get_status_monitor().snapshot(instance_id)
    return {
        "taken_at": snapshot.taken_at.isoformat(),
        "cycle": snapshot.cycle,
        "counts": snapshot.counts(),
        "instances": [view.model_dump(mode="json") for view in snapshot.instances],
    }


@router.get("/status/text", response_class=PlainTextResponse, tags=["Status"])
async def get_status_text(
    instance_id: Optional[List[str]] = Query(None, description="Only these instances"),
):
    """
    The same snapshot rendered as a text table.
    """
    return render_snapshot(get_status_monitor().snapshot(instance_id))


# ============================================================================
# TRIGGERS
# ============================================================================

@router.get("/triggers", tags=["Triggers"])
async def list_triggers():
    """
    Configured trigger routes and rules, with intake and consumer counters.
    """
    routes = _trigger_config.routes if _trigger_config else []
    rules = _trigger_config.rules if _trigger_config else []
    return {
        "routes": [r.model_dump() for r in routes],
        "rules": [r.model_dump() for r in rules],
        "listener": _trigger_listener.stats if _trigger_listener else None,
        "consumer": _trigger_consumer.stats if _trigger_consumer else None,
    }
