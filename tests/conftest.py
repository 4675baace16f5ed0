"""Shared fixtures for engine tests."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import structlog

from core.config import Settings
from models.database import Workflow, WorkflowExecution
from services.execution import NodeExecutor, RetryPolicy, WorkflowExecutor
from services.integrations import IntegrationRegistry
from services.trace_store import InMemoryTraceStore


class FakeClock:
    """Controllable UTC time source."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def node(node_id: str, subtype: str, node_type: str = "action", **config) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "subtype": subtype, "label": node_id.upper(), "config": config}


def edge(source: str, target: str, label: Optional[str] = None) -> Dict[str, Any]:
    data = {"id": f"{source}-{target}", "source": source, "target": target}
    if label:
        data["label"] = label
    return data


@pytest.fixture
def settings():
    return Settings(database_url="sqlite+aiosqlite:///:memory:", scheduler_tick_seconds=60)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryTraceStore()


@pytest.fixture
def email_handler():
    """Email handler that echoes the resolved recipient."""
    async def handler(config, data):
        return {"success": True, "message": "Email sent successfully", "recipient": config.get("recipient")}
    return AsyncMock(side_effect=handler)


@pytest.fixture
def action_handler():
    return AsyncMock(return_value={"success": True, "message": "done"})


@pytest.fixture
def invoker(email_handler, action_handler):
    return IntegrationRegistry({"email": email_handler, "action": action_handler})


@pytest.fixture
def node_executor(store, invoker, clock):
    return NodeExecutor(store, invoker, retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0), clock=clock)


@pytest.fixture
def workflow_executor(store, node_executor, clock):
    return WorkflowExecutor(store, node_executor, clock=clock)


@pytest.fixture
def make_workflow(store):
    async def factory(nodes: List[Dict], edges: List[Dict], status: str = "active",
                      name: str = "Test workflow") -> Workflow:
        return await store.create_workflow(Workflow(name=name, status=status, nodes=nodes, edges=edges))
    return factory


@pytest.fixture
def start_execution(store, clock):
    async def factory(workflow: Workflow, data: Optional[Dict] = None) -> WorkflowExecution:
        return await store.create_execution(WorkflowExecution(
            workflow_id=workflow.id, status="running", started_at=clock(), data=data or {}))
    return factory


@pytest.fixture
def restore_logging():
    """Undo configure_logging: root handlers, root level and structlog state."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
