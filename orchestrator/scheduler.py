# ============================================================================
# DAG SCHEDULER
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Owns every workflow instance and its task states
# PURPOSE: Validate, launch and supervise DAG instances
# CREATED: 15 OCT 2026
# ============================================================================
"""
DAG Scheduler

The single owner of instance state.

submit():
    1. Validate the graph (cycles, dangling edges) and bind params
    2. Render every task's argv/env up front (template errors reject here)
    3. Create the instance; spawn one supervised asyncio task per DAG task

Each supervised task:
    - waits on its dependencies' gate futures (WAITING_ON_DEPENDENCIES)
    - fails with "upstream failed: <dep>" if any dependency fails
    - otherwise hands over to the TaskRunner (probe, launch, readiness)

Dependency gate:
    READY (default): a dependency counts once it passes its own readiness
    STARTED: a dependency counts as soon as its process launches
Either way a dependent never probes before its dependencies are RUNNING.

All task state changes go through _transition(); readers get deep copies.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from core.config import SchedulerDefaults, get_defaults
from core.contracts import DependencyGate, InstanceStatus, Protocol, TaskState
from core.errors import (
    InstanceActiveError,
    InstanceNotFoundError,
    MalformedDefinitionError,
    ValidationError,
)
from core.logging import log_checkpoint, log_context
from core.models import (
    DagDefinition,
    TaskDefinition,
    TaskRecord,
    TransitionRecord,
    TriggerInfo,
    WorkflowInstance,
    generate_instance_id,
)
from infrastructure.resolver import ProbeTarget, SubstrateResolver
from infrastructure.substrate import ExecutionSubstrate, LaunchSpec
from orchestrator.engine.graph import DagValidator
from orchestrator.engine.templates import (
    TaskContext,
    TemplateContext,
    TemplateResolutionError,
    get_resolver,
)
from orchestrator.probe import ReadinessProbe
from orchestrator.runner import RunContext, TaskRunner

logger = logging.getLogger(__name__)


@dataclass
class _InstanceRuntime:
    """Scheduler-private bookkeeping for one instance."""
    definition: DagDefinition
    instance: WorkflowInstance
    launches: Dict[str, LaunchSpec]
    started: Dict[str, asyncio.Future] = field(default_factory=dict)
    ready: Dict[str, asyncio.Future] = field(default_factory=dict)
    runners: Dict[str, asyncio.Task] = field(default_factory=dict)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    cancelling: bool = False
    cancel_reason: str = "cancelled"


class DagScheduler:
    """
    Launches and supervises workflow instances.

    Args:
        substrate: Where stages run
        probe: Readiness probe; defaults to one resolving through the substrate
        config: Scheduler defaults (gate, history depth, retention)
    """

    def __init__(
        self,
        substrate: ExecutionSubstrate,
        probe: Optional[ReadinessProbe] = None,
        config: Optional[SchedulerDefaults] = None,
    ):
        self.substrate = substrate
        self.probe = probe or ReadinessProbe(SubstrateResolver(substrate))
        self.config = config or get_defaults().scheduler
        self.runner = TaskRunner(substrate, self.probe)
        self.validator = DagValidator()

        self._instances: Dict[str, _InstanceRuntime] = {}

        # Background tasks
        self._running = False
        self._stop_event = asyncio.Event()
        self._housekeeping_task: Optional[asyncio.Task] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._submitted = 0
        self._rejected = 0
        self._succeeded = 0
        self._failed = 0
        self._cancelled = 0
        self._reclaimed = 0
        self._transitions = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start background housekeeping (archive retention)."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._started_at = datetime.utcnow()
        self._stop_event.clear()

        if self.config.archive_retention_seconds is not None:
            self._housekeeping_task = asyncio.create_task(
                self._housekeeping_loop(), name="scheduler-housekeeping"
            )
        logger.info(
            f"Scheduler started (gate={self.config.dependency_gate.value}, "
            f"retention={self.config.archive_retention_seconds})"
        )

    async def stop(self) -> None:
        """Cancel active instances and stop background tasks."""
        logger.info("Stopping scheduler")
        self._running = False
        self._stop_event.set()

        if self._housekeeping_task:
            self._housekeeping_task.cancel()
            try:
                await self._housekeeping_task
            except asyncio.CancelledError:
                pass
            self._housekeeping_task = None

        for instance_id, runtime in list(self._instances.items()):
            if not runtime.instance.status.is_terminal():
                await self.cancel(instance_id, reason="orchestrator shutdown")

        logger.info(
            f"Scheduler stopped (submitted={self._submitted}, succeeded={self._succeeded}, "
            f"failed={self._failed}, cancelled={self._cancelled})"
        )

    # =========================================================================
    # SUBMIT
    # =========================================================================

    async def submit(
        self,
        definition: DagDefinition,
        params: Optional[Dict[str, Any]] = None,
        trigger: Optional[TriggerInfo] = None,
    ) -> str:
        """
        Validate a DAG and start a new instance of it.

        Args:
            definition: DAG to run
            params: Parameter values (merged over declared defaults)
            trigger: Originating event, if submitted by a rule

        Returns:
            The new instance_id

        Raises:
            ValidationError: cycle, unknown dependency, or malformed input.
                Nothing is launched when this is raised.
        """
        try:
            order = self.validator.validate(definition)
            bound = self._bind_params(definition, params or {})
            instance_id = self._new_instance_id(definition)
            launches = self._render_launches(definition, instance_id, bound)
        except ValidationError as e:
            self._rejected += 1
            logger.warning(f"Rejected submission of {definition.dag_id}: {e}")
            raise

        instance = WorkflowInstance(
            instance_id=instance_id,
            dag_id=definition.dag_id,
            dag_version=definition.version,
            params=bound,
            trigger=trigger,
            tasks={
                task.name: TaskRecord(
                    name=task.name,
                    address=task.address,
                    depends_on=list(task.depends_on),
                )
                for task in definition.tasks
            },
        )

        loop = asyncio.get_running_loop()
        runtime = _InstanceRuntime(definition=definition, instance=instance, launches=launches)
        for task in definition.tasks:
            runtime.started[task.name] = loop.create_future()
            runtime.ready[task.name] = loop.create_future()

        try:
            await self.substrate.prepare(instance_id, [task.address for task in definition.tasks])
        except Exception as e:
            logger.error(f"Could not prepare {instance_id}: {type(e).__name__}: {e}")
            raise

        self._instances[instance_id] = runtime
        self._submitted += 1

        with log_context(instance_id=instance_id, dag_id=definition.dag_id):
            log_checkpoint("instance_submitted", {
                "tasks": order,
                "trigger": trigger.event_id if trigger else None,
            })
            for name in order:
                task = definition.get_task(name)
                runtime.runners[name] = asyncio.create_task(
                    self._supervise(runtime, task), name=f"{instance_id}/{name}"
                )

        logger.info(f"Submitted {instance_id} ({definition.dag_id} v{definition.version}, {len(order)} tasks)")
        return instance_id

    def _bind_params(self, definition: DagDefinition, supplied: Dict[str, Any]) -> Dict[str, Any]:
        bound = {name: default for name, default in definition.params.items() if default is not None}
        bound.update(supplied)
        missing = [name for name in definition.required_params if bound.get(name) is None]
        if missing:
            raise MalformedDefinitionError(f"Missing required params: {', '.join(sorted(missing))}")
        return bound

    def _new_instance_id(self, definition: DagDefinition) -> str:
        while True:
            instance_id = generate_instance_id(definition.entrypoint)
            if instance_id not in self._instances:
                return instance_id

    def _render_launches(
        self,
        definition: DagDefinition,
        instance_id: str,
        params: Dict[str, Any],
    ) -> Dict[str, LaunchSpec]:
        """Render argv and env of every task; any template error rejects the DAG."""
        resolver = get_resolver()
        context = TemplateContext(
            params=params,
            tasks={
                task.name: TaskContext(
                    address=task.address,
                    ports={(p.name or str(p.port)): p.port for p in task.ports},
                    host=self.substrate.endpoint(instance_id, task.address),
                )
                for task in definition.tasks
            },
            instance={"id": instance_id, "dag_id": definition.dag_id},
        )

        launches: Dict[str, LaunchSpec] = {}
        errors: List[str] = []
        for task in definition.tasks:
            try:
                argv = resolver.render_text(task.command + task.args, context)
                env = resolver.render_text(task.env, context)
            except TemplateResolutionError as e:
                errors.append(f"Task '{task.name}': {e}")
                continue
            launches[task.name] = LaunchSpec(
                instance_id=instance_id,
                task=task.name,
                address=task.address,
                argv=tuple(argv),
                env=env,
                ports=tuple(p.port for p in task.ports),
                workdir=task.workdir,
            )

        if errors:
            raise MalformedDefinitionError("; ".join(errors), errors=errors)
        return launches

    # =========================================================================
    # SUPERVISION
    # =========================================================================

    async def _supervise(self, runtime: _InstanceRuntime, task: TaskDefinition) -> None:
        instance = runtime.instance
        with log_context(instance_id=instance.instance_id, dag_id=instance.dag_id, task=task.name):
            try:
                if task.depends_on:
                    self._transition(runtime, task.name, TaskState.WAITING_ON_DEPENDENCIES)
                    failed_dep = await self._await_dependencies(runtime, task)
                    if failed_dep is not None:
                        self._transition(
                            runtime, task.name, TaskState.FAILED,
                            reason=f"upstream failed: {failed_dep}",
                        )
                        return

                ctx = RunContext(
                    instance_id=instance.instance_id,
                    task=task,
                    launch=runtime.launches[task.name],
                    transition=lambda state, **kw: self._transition(runtime, task.name, state, **kw),
                    dependencies=[self._target_for(runtime, dep) for dep in task.depends_on],
                    self_target=self._target_for(runtime, task.name) if task.ports else None,
                    on_attempt=lambda n: self._record_attempt(runtime, task.name),
                )
                await self.runner.run(ctx)

            except asyncio.CancelledError:
                self._fail_if_open(runtime, task.name, runtime.cancel_reason)
                raise
            except Exception as e:
                logger.exception(f"Task {task.name} crashed: {e}")
                self._fail_if_open(runtime, task.name, f"internal error: {e}")

    async def _await_dependencies(self, runtime: _InstanceRuntime, task: TaskDefinition) -> Optional[str]:
        """
        Block until every dependency satisfies the gate.

        Returns the name of the first dependency that failed, or None.
        """
        gates = runtime.started if self.config.dependency_gate == DependencyGate.STARTED else runtime.ready
        pending = {gates[dep]: dep for dep in task.depends_on}

        while pending:
            done, _ = await asyncio.wait(list(pending), return_when=asyncio.FIRST_COMPLETED)
            for fut in done:
                dep = pending.pop(fut)
                if not fut.result():
                    return dep
        return None

    def _target_for(self, runtime: _InstanceRuntime, task_name: str) -> ProbeTarget:
        task = runtime.definition.get_task(task_name)
        port = task.primary_port
        return ProbeTarget(
            host=task.address,
            port=port.port if port else None,
            protocol=port.protocol if port else Protocol.UDP,
            scope=runtime.instance.instance_id,
        )

    def _record_attempt(self, runtime: _InstanceRuntime, task_name: str) -> None:
        runtime.instance.tasks[task_name].probe_attempts += 1

    # =========================================================================
    # STATE TRANSITIONS (only writer of task state)
    # =========================================================================

    def _transition(
        self,
        runtime: _InstanceRuntime,
        task_name: str,
        new_state: TaskState,
        reason: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        instance = runtime.instance
        record = instance.tasks[task_name]

        if record.state.is_terminal():
            logger.debug(f"Ignoring {task_name} -> {new_state.value}: already {record.state.value}")
            return

        previous = record.apply(new_state, reason=reason, exit_code=exit_code)
        instance.record_transition(
            TransitionRecord(
                instance_id=instance.instance_id,
                task=task_name,
                from_state=previous,
                to_state=new_state,
                reason=reason,
            ),
            limit=self.config.max_transitions,
        )
        self._transitions += 1

        suffix = f" ({reason})" if reason else ""
        if new_state == TaskState.FAILED:
            logger.warning(f"{task_name}: {previous.value} -> {new_state.value}{suffix}")
        else:
            logger.info(f"{task_name}: {previous.value} -> {new_state.value}{suffix}")

        started = runtime.started[task_name]
        ready = runtime.ready[task_name]
        if new_state == TaskState.RUNNING and not started.done():
            started.set_result(True)
        elif new_state == TaskState.READY and not ready.done():
            ready.set_result(True)
        elif new_state == TaskState.FAILED:
            if not started.done():
                started.set_result(False)
            if not ready.done():
                ready.set_result(False)

        if instance.all_tasks_terminal() and not instance.status.is_terminal():
            self._finalize(runtime)

    def _fail_if_open(self, runtime: _InstanceRuntime, task_name: str, reason: str) -> None:
        if not runtime.instance.tasks[task_name].state.is_terminal():
            self._transition(runtime, task_name, TaskState.FAILED, reason=reason)

    def _finalize(self, runtime: _InstanceRuntime) -> None:
        instance = runtime.instance
        if runtime.cancelling:
            instance.status = InstanceStatus.CANCELLED
            self._cancelled += 1
        elif all(r.state == TaskState.READY for r in instance.tasks.values()):
            instance.status = InstanceStatus.SUCCEEDED
            self._succeeded += 1
        else:
            instance.status = InstanceStatus.FAILED
            self._failed += 1

        instance.archive()
        runtime.done.set()
        with log_context(instance_id=instance.instance_id, dag_id=instance.dag_id):
            log_checkpoint("instance_finished", {"status": instance.status.value})
        logger.info(f"Instance {instance.instance_id} finished: {instance.status.value}")

    # =========================================================================
    # OPERATOR ACTIONS
    # =========================================================================

    async def cancel(self, instance_id: str, reason: str = "cancelled") -> WorkflowInstance:
        """
        Cancel an instance.

        Stops every in-flight runner (and its probes), marks each unfinished
        task FAILED with the reason, then terminates launched stages.
        A terminal instance is returned unchanged.
        """
        runtime = self._get_runtime(instance_id)
        if runtime.instance.status.is_terminal():
            return self._copy(runtime.instance)

        runtime.cancelling = True
        runtime.cancel_reason = reason
        runners = [t for t in runtime.runners.values() if not t.done()]
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)

        # Runners cancelled before their first step never saw CancelledError
        for name in runtime.instance.tasks:
            self._fail_if_open(runtime, name, reason)

        await self.substrate.terminate_instance(instance_id, timeout=self.config.terminate_timeout_seconds)
        logger.info(f"Cancelled {instance_id}")
        return self._copy(runtime.instance)

    async def reclaim(self, instance_id: str) -> None:
        """
        Drop a terminal instance and release its stages and names.

        Raises:
            InstanceNotFoundError: unknown instance
            InstanceActiveError: instance has not finished
        """
        runtime = self._get_runtime(instance_id)
        if not runtime.instance.status.is_terminal():
            raise InstanceActiveError(instance_id)

        await self.substrate.forget(instance_id)
        del self._instances[instance_id]
        self._reclaimed += 1
        logger.info(f"Reclaimed {instance_id}")

    async def wait(self, instance_id: str, timeout: Optional[float] = None) -> WorkflowInstance:
        """
        Wait for an instance to finish.

        Raises:
            asyncio.TimeoutError: still running after timeout
        """
        runtime = self._get_runtime(instance_id)
        await asyncio.wait_for(runtime.done.wait(), timeout)
        return self._copy(runtime.instance)

    # =========================================================================
    # QUERIES (copy-on-read)
    # =========================================================================

    def poll(self, instance_id: str) -> Dict[str, TaskState]:
        """Current state of every task in an instance."""
        return self._get_runtime(instance_id).instance.task_states()

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self._copy(self._get_runtime(instance_id).instance)

    def has_instance(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def list_instances(self, include_archived: bool = True) -> List[WorkflowInstance]:
        return [
            self._copy(runtime.instance)
            for runtime in self._instances.values()
            if include_archived or not runtime.instance.archived
        ]

    def transitions(self, instance_id: str, limit: Optional[int] = None) -> List[TransitionRecord]:
        history = self._get_runtime(instance_id).instance.transitions
        if limit is not None:
            history = history[-limit:] if limit > 0 else []
        return [record.model_copy() for record in history]

    def task_output(self, instance_id: str, task_name: str, since: int = 0) -> Tuple[List[str], int]:
        """
        Captured stage output from cursor 'since'.

        Raises:
            InstanceNotFoundError: unknown instance
            KeyError: task not in this instance
        """
        runtime = self._get_runtime(instance_id)
        if task_name not in runtime.instance.tasks:
            raise KeyError(f"Task '{task_name}' not found in instance '{instance_id}'")
        handle = self.substrate.handles(instance_id).get(task_name)
        if handle is None:
            return [], since
        return handle.output(since)

    def _get_runtime(self, instance_id: str) -> _InstanceRuntime:
        runtime = self._instances.get(instance_id)
        if runtime is None:
            raise InstanceNotFoundError(instance_id)
        return runtime

    @staticmethod
    def _copy(instance: WorkflowInstance) -> WorkflowInstance:
        return instance.model_copy(deep=True)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def _housekeeping_loop(self) -> None:
        """Reclaim archived instances older than the retention period."""
        retention = timedelta(seconds=self.config.archive_retention_seconds)
        interval = self.config.housekeeping_interval_seconds

        while not self._stop_event.is_set():
            try:
                cutoff = datetime.utcnow() - retention
                expired = [
                    instance_id
                    for instance_id, runtime in self._instances.items()
                    if runtime.instance.archived and runtime.instance.archived_at
                    and runtime.instance.archived_at < cutoff
                ]
                for instance_id in expired:
                    await self.reclaim(instance_id)
                if expired:
                    logger.info(f"Housekeeping reclaimed {len(expired)} archived instance(s)")
            except Exception as e:
                logger.error(f"Housekeeping error: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # STATS AND PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        uptime_seconds = None
        if self._started_at:
            uptime_seconds = (datetime.utcnow() - self._started_at).total_seconds()

        active = sum(1 for r in self._instances.values() if not r.instance.status.is_terminal())
        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime_seconds,
            "dependency_gate": self.config.dependency_gate.value,
            "archive_retention_seconds": self.config.archive_retention_seconds,
            "instances": len(self._instances),
            "active_instances": active,
            "submitted": self._submitted,
            "rejected": self._rejected,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "cancelled": self._cancelled,
            "reclaimed": self._reclaimed,
            "transitions": self._transitions,
        }


__all__ = ["DagScheduler"]
