"""Trace store interface and in-memory implementation.

The engine persists workflows, executions and node executions through the
TraceStore protocol. core.database.Database is the durable implementation;
InMemoryTraceStore backs tests and embedded use.

Usage:
    from services.trace_store import InMemoryTraceStore

    store = InMemoryTraceStore()
    workflow = await store.create_workflow(Workflow(name="Daily report"))
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional, Protocol

from core.logging import get_logger
from models.database import NodeExecution, Workflow, WorkflowExecution, utc_now

logger = get_logger(__name__)


class TraceStore(Protocol):
    """Protocol for trace stores (enables duck typing)."""

    # Workflows
    async def create_workflow(self, workflow: Workflow) -> Workflow: ...
    async def get_workflow(self, workflow_id: int) -> Optional[Workflow]: ...
    async def list_workflows(self, status: Optional[str] = None) -> List[Workflow]: ...
    async def update_workflow(self, workflow_id: int, **fields: Any) -> Optional[Workflow]: ...
    async def delete_workflow(self, workflow_id: int) -> bool: ...

    # Workflow executions
    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution: ...
    async def get_execution(self, execution_id: int) -> Optional[WorkflowExecution]: ...
    async def list_executions(self) -> List[WorkflowExecution]: ...
    async def update_execution(self, execution_id: int, **fields: Any) -> Optional[WorkflowExecution]: ...
    async def delete_execution(self, execution_id: int) -> bool: ...
    async def list_recent_executions(self, limit: int = 10) -> List[WorkflowExecution]: ...
    async def list_executions_by_workflow(self, workflow_id: int) -> List[WorkflowExecution]: ...

    # Node executions
    async def create_node_execution(self, node_execution: NodeExecution) -> NodeExecution: ...
    async def get_node_execution(self, node_execution_id: int) -> Optional[NodeExecution]: ...
    async def update_node_execution(self, node_execution_id: int, **fields: Any) -> Optional[NodeExecution]: ...
    async def list_node_executions(self, execution_id: int) -> List[NodeExecution]: ...


def _apply(record, fields: Dict[str, Any]):
    for key, value in fields.items():
        if not hasattr(record, key):
            raise AttributeError(f"{type(record).__name__} has no field '{key}'")
        setattr(record, key, value)
    return record


class InMemoryTraceStore:
    """Dict-backed trace store.

    Mutations are serialized with a lock. Ids are assigned from per-table
    counters and never reused.
    """

    def __init__(self):
        self._workflows: Dict[int, Workflow] = {}
        self._executions: Dict[int, WorkflowExecution] = {}
        self._node_executions: Dict[int, NodeExecution] = {}
        self._workflow_ids = itertools.count(1)
        self._execution_ids = itertools.count(1)
        self._node_execution_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    # =========================================================================
    # WORKFLOWS
    # =========================================================================

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        async with self._lock:
            workflow.id = next(self._workflow_ids)
            self._workflows[workflow.id] = workflow
        logger.debug("Workflow created", workflow_id=workflow.id, name=workflow.name)
        return workflow

    async def get_workflow(self, workflow_id: int) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    async def list_workflows(self, status: Optional[str] = None) -> List[Workflow]:
        workflows = list(self._workflows.values())
        if status is not None:
            workflows = [w for w in workflows if w.status == status]
        return workflows

    async def update_workflow(self, workflow_id: int, **fields: Any) -> Optional[Workflow]:
        async with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                return None
            fields.setdefault("updated_at", utc_now())
            return _apply(workflow, fields)

    async def delete_workflow(self, workflow_id: int) -> bool:
        async with self._lock:
            if self._workflows.pop(workflow_id, None) is None:
                return False
            for execution_id in [e.id for e in self._executions.values() if e.workflow_id == workflow_id]:
                self._delete_execution_locked(execution_id)
        return True

    # =========================================================================
    # WORKFLOW EXECUTIONS
    # =========================================================================

    async def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        async with self._lock:
            execution.id = next(self._execution_ids)
            self._executions[execution.id] = execution
        return execution

    async def get_execution(self, execution_id: int) -> Optional[WorkflowExecution]:
        return self._executions.get(execution_id)

    async def list_executions(self) -> List[WorkflowExecution]:
        return list(self._executions.values())

    async def update_execution(self, execution_id: int, **fields: Any) -> Optional[WorkflowExecution]:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                return None
            return _apply(execution, fields)

    async def delete_execution(self, execution_id: int) -> bool:
        async with self._lock:
            return self._delete_execution_locked(execution_id)

    def _delete_execution_locked(self, execution_id: int) -> bool:
        if self._executions.pop(execution_id, None) is None:
            return False
        for node_execution_id in [n.id for n in self._node_executions.values()
                                  if n.execution_id == execution_id]:
            del self._node_executions[node_execution_id]
        return True

    async def list_recent_executions(self, limit: int = 10) -> List[WorkflowExecution]:
        executions = sorted(self._executions.values(),
                            key=lambda e: (e.started_at, e.id), reverse=True)
        return executions[:limit]

    async def list_executions_by_workflow(self, workflow_id: int) -> List[WorkflowExecution]:
        return [e for e in self._executions.values() if e.workflow_id == workflow_id]

    # =========================================================================
    # NODE EXECUTIONS
    # =========================================================================

    async def create_node_execution(self, node_execution: NodeExecution) -> NodeExecution:
        async with self._lock:
            node_execution.id = next(self._node_execution_ids)
            self._node_executions[node_execution.id] = node_execution
        return node_execution

    async def get_node_execution(self, node_execution_id: int) -> Optional[NodeExecution]:
        return self._node_executions.get(node_execution_id)

    async def update_node_execution(self, node_execution_id: int, **fields: Any) -> Optional[NodeExecution]:
        async with self._lock:
            node_execution = self._node_executions.get(node_execution_id)
            if node_execution is None:
                return None
            return _apply(node_execution, fields)

    async def list_node_executions(self, execution_id: int) -> List[NodeExecution]:
        return sorted((n for n in self._node_executions.values() if n.execution_id == execution_id),
                      key=lambda n: n.id)
