"""Workflow Service - Facade for workflow storage, on-demand runs and
schedule lifecycle.

Delegates to:
- TraceStore: workflow and execution records
- WorkflowExecutor: running a workflow against an execution record
- ScheduleManager: schedule trigger jobs
"""

import asyncio
from typing import Any, Dict, List, Optional, Set, TYPE_CHECKING

from core.logging import get_logger
from models.database import NodeExecution, Workflow, WorkflowExecution, utc_now
from models.nodes import WorkflowGraphModel, validate_node_config
from services.execution.exceptions import WorkflowNotFoundError
from services.execution.models import ExecutionStatus, WorkflowState

if TYPE_CHECKING:
    from services.execution import WorkflowExecutor
    from services.schedule_manager import ScheduleManager
    from services.trace_store import TraceStore

logger = get_logger(__name__)


class WorkflowService:
    """Workflow storage and execution facade."""

    def __init__(
        self,
        store: "TraceStore",
        executor: "WorkflowExecutor",
        schedule_manager: Optional["ScheduleManager"] = None,
    ):
        self.store = store
        self.executor = executor
        self.schedule_manager = schedule_manager
        self._running_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # WORKFLOWS
    # =========================================================================

    async def save_workflow(self, name: str, nodes: List[Dict[str, Any]],
                            edges: List[Dict[str, Any]], status: str = WorkflowState.DRAFT.value,
                            description: Optional[str] = None) -> Workflow:
        """Validate and store a new workflow.

        Raises:
            pydantic.ValidationError: If a node or edge is malformed, an edge
                points outside the workflow, or a known subtype's config is invalid
        """
        graph = WorkflowGraphModel.model_validate({"nodes": nodes, "edges": edges})
        for node in graph.nodes:
            validate_node_config(node.subtype, node.config)

        workflow = await self.store.create_workflow(Workflow(
            name=name,
            description=description,
            status=WorkflowState(status).value,
            nodes=[node.model_dump(exclude_none=True) for node in graph.nodes],
            edges=[edge.model_dump(exclude_none=True) for edge in graph.edges],
        ))
        logger.info("Workflow saved", workflow_id=workflow.id, name=name, node_count=len(graph.nodes))

        if workflow.status == WorkflowState.ACTIVE.value and self.schedule_manager:
            await self.schedule_manager.schedule_workflow(workflow)
        return workflow

    async def get_workflow(self, workflow_id: int) -> Workflow:
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def set_workflow_status(self, workflow_id: int, status: str) -> Workflow:
        """Change a workflow's status and keep its schedule jobs in step."""
        new_status = WorkflowState(status).value
        workflow = await self.store.update_workflow(workflow_id, status=new_status)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        if self.schedule_manager:
            if new_status == WorkflowState.ACTIVE.value:
                await self.schedule_manager.schedule_workflow(workflow)
            else:
                stopped = self.schedule_manager.unschedule_workflow(workflow_id)
                if stopped:
                    logger.info("Workflow deactivated, jobs stopped",
                                workflow_id=workflow_id, jobs=stopped)
        return workflow

    async def delete_workflow(self, workflow_id: int) -> bool:
        if self.schedule_manager:
            self.schedule_manager.unschedule_workflow(workflow_id)
        return await self.store.delete_workflow(workflow_id)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def run_workflow(self, workflow_id: int, initial_data: Optional[Dict[str, Any]] = None,
                           wait: bool = False) -> WorkflowExecution:
        """Start an on-demand run.

        Args:
            workflow_id: Workflow to run
            initial_data: Seed data context
            wait: Await completion instead of running in the background

        Returns:
            The execution record (finalized when wait=True)

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
        """
        workflow = await self.get_workflow(workflow_id)
        data = dict(initial_data or {})

        execution = await self.store.create_execution(WorkflowExecution(
            workflow_id=workflow.id,
            status=ExecutionStatus.RUNNING.value,
            started_at=utc_now(),
            data=data,
        ))
        logger.info("Workflow run requested", workflow_id=workflow.id,
                    execution_id=execution.id, wait=wait)

        if wait:
            return await self.executor.execute_workflow(workflow, execution, data)

        task = asyncio.create_task(self.executor.execute_workflow(workflow, execution, data))
        self._running_tasks.add(task)
        task.add_done_callback(self._running_tasks.discard)
        return execution

    async def wait_for_running(self) -> None:
        """Wait for background runs started by run_workflow."""
        if self._running_tasks:
            await asyncio.gather(*list(self._running_tasks), return_exceptions=True)

    # =========================================================================
    # HISTORY
    # =========================================================================

    async def get_execution_history(self, workflow_id: int) -> List[WorkflowExecution]:
        await self.get_workflow(workflow_id)
        return await self.store.list_executions_by_workflow(workflow_id)

    async def get_recent_executions(self, limit: int = 10) -> List[WorkflowExecution]:
        return await self.store.list_recent_executions(limit)

    async def get_node_executions(self, execution_id: int) -> List[NodeExecution]:
        return await self.store.list_node_executions(execution_id)
