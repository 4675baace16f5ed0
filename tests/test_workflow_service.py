"""Tests for the workflow service facade and the engine lifespan."""

import pytest
from dependency_injector import providers
from pydantic import ValidationError

from constants import schedule_job_key
from core.config import Settings
from core.container import Container
from main import lifespan
from models.database import Workflow
from services.execution.exceptions import WorkflowNotFoundError
from services.schedule_manager import ScheduleManager
from services.scheduler import SchedulerRegistry
from services.workflow import WorkflowService

from conftest import edge, node


@pytest.fixture
def registry():
    registry = SchedulerRegistry()
    yield registry
    registry.shutdown()


@pytest.fixture
def schedule_manager(store, workflow_executor, registry, settings, clock):
    return ScheduleManager(store, workflow_executor, registry, settings, clock=clock)


@pytest.fixture
def service(store, workflow_executor, schedule_manager):
    return WorkflowService(store, workflow_executor, schedule_manager)


SCHEDULED_NODES = [
    node("s", "schedule", "trigger", scheduleType="interval", interval=10, intervalUnit="minutes"),
    node("a", "action"),
]


@pytest.mark.asyncio
async def test_save_validates_graph(service):
    with pytest.raises(ValidationError):
        await service.save_workflow("Broken", [node("a", "action")], [edge("a", "missing")])
    with pytest.raises(ValidationError):
        await service.save_workflow("Bad loop", [node("l", "loop", loopType="forever")], [])


@pytest.mark.asyncio
async def test_save_active_workflow_schedules_it(service, schedule_manager):
    workflow = await service.save_workflow("Poller", SCHEDULED_NODES, [edge("s", "a")], status="active")
    assert schedule_manager.is_scheduled(schedule_job_key(workflow.id, "s"))


@pytest.mark.asyncio
async def test_deactivation_stops_jobs(service, schedule_manager, registry):
    """Leaving active deregisters the workflow's timers"""
    workflow = await service.save_workflow("Poller", SCHEDULED_NODES, [edge("s", "a")], status="active")
    job_key = schedule_job_key(workflow.id, "s")

    await service.set_workflow_status(workflow.id, "draft")
    assert not schedule_manager.is_scheduled(job_key)
    assert not registry.has_job(job_key)

    await service.set_workflow_status(workflow.id, "active")
    assert schedule_manager.is_scheduled(job_key)


@pytest.mark.asyncio
async def test_unknown_workflow(service):
    with pytest.raises(WorkflowNotFoundError):
        await service.get_workflow(404)
    with pytest.raises(WorkflowNotFoundError):
        await service.run_workflow(404)
    with pytest.raises(WorkflowNotFoundError):
        await service.set_workflow_status(404, "active")


@pytest.mark.asyncio
async def test_run_and_wait(service):
    workflow = await service.save_workflow(
        "Welcome",
        [node("t", "manual", "trigger"), node("e", "email", recipient="{{data.email}}")],
        [edge("t", "e")],
    )

    execution = await service.run_workflow(workflow.id, {"email": "x@y.com"}, wait=True)

    assert execution.status == "completed"
    nodes = await service.get_node_executions(execution.id)
    assert [n.node_id for n in nodes] == ["t", "e"]
    assert [e.id for e in await service.get_execution_history(workflow.id)] == [execution.id]


@pytest.mark.asyncio
async def test_background_run(service, store):
    """Runs started without wait finish in the background"""
    workflow = await service.save_workflow("Bg", [node("a", "action")], [])

    execution = await service.run_workflow(workflow.id)
    assert execution.status == "running"

    await service.wait_for_running()
    stored = await store.get_execution(execution.id)
    assert stored.status == "completed"
    assert [e.id for e in await service.get_recent_executions()] == [execution.id]


@pytest.mark.asyncio
async def test_delete_workflow_unschedules(service, schedule_manager, store):
    workflow = await service.save_workflow("Poller", SCHEDULED_NODES, [edge("s", "a")], status="active")

    assert await service.delete_workflow(workflow.id) is True
    assert schedule_manager.list_jobs() == []
    assert await store.get_workflow(workflow.id) is None


@pytest.mark.asyncio
async def test_lifespan_runs_engine_end_to_end(tmp_path, restore_logging):
    """The container wires a durable engine that runs and schedules workflows"""
    app_container = Container()
    app_container.settings.override(providers.Object(Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/engine.db",
        log_format="console",
    )))

    async with lifespan(app_container) as running:
        registry = running.scheduler_registry()
        assert registry.running
        assert registry.has_job("schedule_manager_tick")

        service = running.workflow_service()
        workflow = await service.save_workflow(
            "Digest",
            [node("s", "schedule", "trigger", scheduleType="cron", cron="0 8 * * 1"),
             node("d", "database", operation="query", query="SELECT 1")],
            [edge("s", "d")],
            status="active",
        )
        assert registry.has_job(schedule_job_key(workflow.id, "s"))

        execution = await service.run_workflow(workflow.id, wait=True)
        assert execution.status == "completed"
        assert execution.data["d"]["message"] == "Query executed successfully"

    assert not registry.running


@pytest.mark.asyncio
async def test_background_run_of_malformed_workflow_is_finalized(service, store):
    """Runs started in the background record structural failures"""
    workflow = await store.create_workflow(Workflow(
        name="Broken", status="active", nodes=[{"subtype": "email"}], edges=[]))

    execution = await service.run_workflow(workflow.id)
    await service.wait_for_running()

    stored = await store.get_execution(execution.id)
    assert stored.status == "failed"
    assert stored.error.startswith("Invalid workflow")
