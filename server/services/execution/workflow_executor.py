"""Workflow Executor - runs a workflow's start-node subtrees and finalizes
the execution record.

Start nodes run one after another; each subtree completes before the next
start node begins, and the data context threads through all of them.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from core.logging import execution_context, get_logger, log_execution_time
from models.database import Workflow, WorkflowExecution, ensure_utc
from .exceptions import NoStartNodesError
from .graph import WorkflowGraph
from .models import ExecutionStatus
from .node_executor import NodeExecutor

if TYPE_CHECKING:
    from services.trace_store import TraceStore

logger = get_logger(__name__)


class WorkflowExecutor:
    """Top-level orchestrator for a single workflow execution."""

    def __init__(self, store: "TraceStore", node_executor: NodeExecutor,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.node_executor = node_executor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def execute_workflow(self, workflow: Workflow, execution: WorkflowExecution,
                               initial_data: Optional[Dict[str, Any]] = None) -> WorkflowExecution:
        """Execute a workflow against an already created execution record.

        Failures are recorded on the execution, not raised: the returned
        record is completed or failed.

        Args:
            workflow: Stored workflow; its nodes and edges are snapshotted here
            execution: Execution record in status running
            initial_data: Seed data context

        Returns:
            The finalized execution record
        """
        with execution_context(execution_id=execution.id, workflow_id=workflow.id):
            return await self._run(workflow, execution, initial_data)

    async def _run(self, workflow: Workflow, execution: WorkflowExecution,
                   initial_data: Optional[Dict[str, Any]]) -> WorkflowExecution:
        start_time = time.time()
        data: Dict[str, Any] = dict(initial_data or {})

        try:
            graph = WorkflowGraph.from_workflow(workflow)
            logger.info("Starting workflow execution", node_count=len(graph.nodes))

            start_nodes = graph.start_nodes()
            if not start_nodes:
                raise NoStartNodesError()

            for node in start_nodes:
                data = await self.node_executor.execute_node(graph, execution, node, data)

            finalized = await self._finalize(execution, ExecutionStatus.COMPLETED, data=data)
            log_execution_time(logger, "workflow_execution", start_time, time.time(), status="completed")
            return finalized

        except asyncio.CancelledError:
            await self._finalize(execution, ExecutionStatus.FAILED, error="Execution cancelled")
            raise

        except Exception as e:
            logger.error("Workflow execution failed", error=str(e))
            return await self._finalize(execution, ExecutionStatus.FAILED, error=str(e))

    async def _finalize(self, execution: WorkflowExecution, status: ExecutionStatus,
                        data: Optional[Dict[str, Any]] = None,
                        error: Optional[str] = None) -> WorkflowExecution:
        now = self._clock()
        started_at = ensure_utc(execution.started_at) or now
        fields: Dict[str, Any] = {
            "status": status.value,
            "completed_at": now,
            "duration": int(round((now - started_at).total_seconds())),
        }
        if data is not None:
            fields["data"] = data
        if error is not None:
            fields["error"] = error

        updated = await self.store.update_execution(execution.id, **fields)
        return updated or execution
