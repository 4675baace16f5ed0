"""Schedule Management - turns schedule trigger nodes into registered timers.

A periodic tick scans active workflows for schedule trigger nodes and
registers a timer for every job key that is not registered yet. Firing a
timer creates a fresh execution and starts the workflow executor as a
background task, so the tick is never blocked on a run.

Job states:
    unscheduled -> scheduled -> (firing)* -> stopped
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, TYPE_CHECKING

from core.logging import get_logger
from constants import (
    DEFAULT_SCHEDULE_INTERVAL,
    SCHEDULE_TYPES,
    SCHEDULER_SOURCE,
    SCHEDULER_TICK_JOB_ID,
    is_schedule_trigger,
    schedule_job_key,
)
from models.database import Workflow, WorkflowExecution
from models.nodes import WorkflowNode
from services.execution.exceptions import ScheduleRegistrationError
from services.execution.models import ExecutionStatus, WorkflowState
from services.execution.triggers import interval_unit_of, schedule_type_of

if TYPE_CHECKING:
    from core.config import Settings
    from services.execution import WorkflowExecutor
    from services.scheduler import SchedulerRegistry
    from services.trace_store import TraceStore

logger = get_logger(__name__)

# Upper bounds for the */N field of each cron unit
_CRON_FIELD_MAX = {'minutes': 59, 'hours': 23, 'days': 31}


def build_interval_cron(interval: int, unit: str) -> str:
    """Cron expression for a minute/hour/day interval.

    N is clamped to the field's range, so 90 minutes runs every 59 minutes.
    """
    if unit == 'hours':
        return f"0 */{min(interval, _CRON_FIELD_MAX['hours'])} * * *"
    if unit == 'days':
        return f"0 0 */{min(interval, _CRON_FIELD_MAX['days'])} * *"
    return f"*/{min(interval, _CRON_FIELD_MAX['minutes'])} * * * *"


def parse_fixed_time(value: Any) -> Optional[datetime]:
    """ISO 8601 timestamp, naive values taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class ScheduledJob:
    """Registered timer for one schedule trigger node."""
    job_key: str
    workflow_id: Any
    node_id: str
    schedule_type: str
    description: str
    registered_at: datetime
    fire_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_key": self.job_key,
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "schedule_type": self.schedule_type,
            "description": self.description,
            "registered_at": self.registered_at.isoformat(),
            "fire_count": self.fire_count,
        }


class ScheduleManager:
    """Manages schedule trigger jobs for active workflows."""

    def __init__(
        self,
        store: "TraceStore",
        executor: "WorkflowExecutor",
        registry: "SchedulerRegistry",
        settings: "Settings",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.executor = executor
        self.registry = registry
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._jobs: Dict[str, ScheduledJob] = {}
        self._running_tasks: Set[asyncio.Task] = set()
        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Register the periodic tick and run a first check immediately."""
        if self._started:
            logger.warning("Schedule manager already started")
            return
        self._started = True
        self.registry.register_interval_job(
            SCHEDULER_TICK_JOB_ID,
            self.settings.scheduler_tick_seconds,
            self.check_scheduled_workflows,
        )
        logger.info("Schedule manager started", tick_seconds=self.settings.scheduler_tick_seconds)
        await self.check_scheduled_workflows()

    async def stop(self) -> None:
        """Remove the tick and every job. In-flight executions keep running."""
        self.registry.remove_job(SCHEDULER_TICK_JOB_ID)
        count = 0
        for job_key in list(self._jobs):
            if self.stop_job(job_key):
                count += 1
        self._started = False
        logger.info("Schedule manager stopped", jobs_removed=count)

    async def wait_for_running(self) -> None:
        """Wait for executions started by fired jobs."""
        if self._running_tasks:
            await asyncio.gather(*list(self._running_tasks), return_exceptions=True)

    # =========================================================================
    # TICK
    # =========================================================================

    async def check_scheduled_workflows(self) -> int:
        """Register jobs for schedule triggers of active workflows.

        Returns:
            Number of jobs newly registered
        """
        try:
            workflows = await self.store.list_workflows(status=WorkflowState.ACTIVE.value)
        except Exception as e:
            logger.error("Failed to load active workflows", error=str(e))
            return 0

        registered = 0
        for workflow in workflows:
            for node in self._schedule_nodes(workflow):
                job_key = schedule_job_key(workflow.id, node.id)
                if job_key in self._jobs:
                    continue
                if self.schedule_node(workflow, node):
                    registered += 1

        if registered:
            logger.info("Scheduled workflow jobs", registered=registered, total=len(self._jobs))
        return registered

    @staticmethod
    def _schedule_nodes(workflow: Workflow) -> List[WorkflowNode]:
        nodes = []
        for raw in workflow.nodes or []:
            try:
                node = WorkflowNode.model_validate(raw)
            except ValueError as e:
                logger.warning("Skipping invalid node", workflow_id=workflow.id, error=str(e))
                continue
            if is_schedule_trigger(node.type, node.subtype):
                nodes.append(node)
        return nodes

    async def schedule_workflow(self, workflow: Workflow) -> int:
        """Register all schedule triggers of one workflow."""
        count = 0
        for node in self._schedule_nodes(workflow):
            if schedule_job_key(workflow.id, node.id) not in self._jobs and self.schedule_node(workflow, node):
                count += 1
        return count

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def schedule_node(self, workflow: Workflow, node: WorkflowNode) -> bool:
        """Register a timer for a schedule trigger node.

        A missing scheduleType means interval, a missing interval means 5.
        Registration problems are logged and leave the job unscheduled.

        Returns:
            True if a timer was registered
        """
        config = node.config
        schedule_type = schedule_type_of(config)
        job_key = schedule_job_key(workflow.id, node.id)
        callback_kwargs = {"job_key": job_key, "workflow_id": workflow.id}

        try:
            if schedule_type not in SCHEDULE_TYPES:
                raise ScheduleRegistrationError(f"Unsupported schedule type: {schedule_type!r}")

            if schedule_type == 'cron':
                expression = config.get('cron')
                self.registry.register_cron_job(
                    job_key, expression, self.fire,
                    timezone=config.get('timezone') or self.settings.scheduler_timezone,
                    **callback_kwargs)
                description = f"cron {expression}"

            elif schedule_type == 'interval':
                description = self._register_interval(job_key, config, callback_kwargs)

            else:
                run_date = parse_fixed_time(config.get('fixedTime'))
                if run_date is None:
                    raise ScheduleRegistrationError(f"Invalid fixed time: {config.get('fixedTime')!r}")
                self.registry.register_date_job(
                    job_key, run_date, self.fire, now=self._clock(), **callback_kwargs)
                description = f"once at {run_date.isoformat()}"

        except ScheduleRegistrationError as e:
            logger.error("Failed to schedule workflow", job_key=job_key,
                         schedule_type=schedule_type, error=str(e))
            return False

        self._jobs[job_key] = ScheduledJob(
            job_key=job_key,
            workflow_id=workflow.id,
            node_id=node.id,
            schedule_type=schedule_type,
            description=description,
            registered_at=self._clock(),
        )
        logger.info("Scheduled workflow", job_key=job_key, schedule=description)
        return True

    def _register_interval(self, job_key: str, config: Dict[str, Any],
                           callback_kwargs: Dict[str, Any]) -> str:
        raw_interval = config.get('interval')
        if raw_interval is None or raw_interval == '':
            raw_interval = DEFAULT_SCHEDULE_INTERVAL
        try:
            interval = int(raw_interval)
        except (TypeError, ValueError):
            raise ScheduleRegistrationError(f"Invalid interval: {raw_interval!r}")
        if interval <= 0:
            raise ScheduleRegistrationError(f"Interval must be positive, got {interval}")

        unit = interval_unit_of(config)
        if unit == 'seconds':
            if interval < 60:
                # Cron cannot express sub-minute periods
                start_date = self._clock() + timedelta(seconds=interval)
                self.registry.register_interval_job(
                    job_key, interval, self.fire, start_date=start_date, **callback_kwargs)
                return f"every {interval} seconds"
            interval, unit = max(1, interval // 60), 'minutes'

        expression = build_interval_cron(interval, unit)
        self.registry.register_cron_job(
            job_key, expression, self.fire,
            timezone=config.get('timezone') or self.settings.scheduler_timezone,
            **callback_kwargs)
        return f"every {interval} {unit} ({expression})"

    # =========================================================================
    # FIRING
    # =========================================================================

    async def fire(self, job_key: str, workflow_id: Any) -> Optional[WorkflowExecution]:
        """Start a scheduled run of a workflow.

        Returns:
            The created execution, or None if the workflow is gone or inactive
        """
        job = self._jobs.get(job_key)
        if job is not None:
            job.fire_count += 1
            if job.schedule_type == 'fixed':
                # One-shot: free the key for future registration
                self._jobs.pop(job_key, None)
                self.registry.remove_job(job_key)

        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            logger.warning("Scheduled workflow not found", job_key=job_key, workflow_id=workflow_id)
            return None
        if workflow.status != WorkflowState.ACTIVE.value:
            logger.info("Scheduled workflow not active, skipping", job_key=job_key,
                        workflow_id=workflow_id, status=workflow.status)
            return None

        now = self._clock()
        execution = await self.store.create_execution(WorkflowExecution(
            workflow_id=workflow.id,
            status=ExecutionStatus.RUNNING.value,
            started_at=now,
            data={"_source": SCHEDULER_SOURCE, "_timestamp": now.isoformat()},
        ))
        logger.info("Executing scheduled workflow", job_key=job_key,
                    workflow_id=workflow.id, execution_id=execution.id)

        task = asyncio.create_task(
            self.executor.execute_workflow(workflow, execution, dict(execution.data)))
        self._running_tasks.add(task)
        task.add_done_callback(self._on_run_done)
        return execution

    def _on_run_done(self, task: asyncio.Task) -> None:
        self._running_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Scheduled execution crashed", error=str(task.exception()))

    # =========================================================================
    # STOPPING
    # =========================================================================

    def stop_job(self, job_key: str) -> bool:
        """Deregister and cancel a job. Unknown keys are a no-op.

        Returns:
            True if a job was stopped
        """
        known = self._jobs.pop(job_key, None) is not None
        removed = self.registry.remove_job(job_key)
        if known or removed:
            logger.info("Stopped scheduled job", job_key=job_key)
            return True
        logger.debug("No scheduled job to stop", job_key=job_key)
        return False

    def unschedule_workflow(self, workflow_id: Any) -> int:
        """Stop every job belonging to a workflow."""
        job_keys = [key for key, job in self._jobs.items() if job.workflow_id == workflow_id]
        for job_key in job_keys:
            self.stop_job(job_key)
        return len(job_keys)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def is_scheduled(self, job_key: str) -> bool:
        return job_key in self._jobs

    def get_job(self, job_key: str) -> Optional[ScheduledJob]:
        return self._jobs.get(job_key)

    def list_jobs(self) -> List[Dict[str, Any]]:
        return [job.to_dict() for job in self._jobs.values()]
