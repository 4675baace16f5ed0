"""Tests for the scheduler registry and schedule trigger management."""

from datetime import timedelta

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from constants import schedule_job_key
from services.execution.exceptions import ScheduleRegistrationError
from services.schedule_manager import ScheduleManager, build_interval_cron, parse_fixed_time
from services.scheduler import SchedulerRegistry, build_cron_trigger

from conftest import edge, node


@pytest.fixture
def registry():
    registry = SchedulerRegistry(timezone="UTC")
    yield registry
    registry.shutdown()


@pytest.fixture
def manager(store, workflow_executor, registry, settings, clock):
    return ScheduleManager(store, workflow_executor, registry, settings, clock=clock)


@pytest.fixture
def schedule_workflow(make_workflow):
    async def factory(status="active", **config):
        return await make_workflow(
            [node("s", "schedule", "trigger", **config), node("a", "action")],
            [edge("s", "a")],
            status=status,
        )
    return factory


async def _noop(**kwargs):
    return None


# =============================================================================
# TRANSLATION
# =============================================================================

@pytest.mark.parametrize("interval,unit,expected", [
    (5, "minutes", "*/5 * * * *"),
    (90, "minutes", "*/59 * * * *"),
    (2, "hours", "0 */2 * * *"),
    (48, "hours", "0 */23 * * *"),
    (3, "days", "0 0 */3 * *"),
])
def test_build_interval_cron(interval, unit, expected):
    """Intervals map to */N cron fields clamped to the field range"""
    assert build_interval_cron(interval, unit) == expected


def test_build_cron_trigger_accepts_five_and_six_fields():
    assert isinstance(build_cron_trigger("*/5 * * * *"), CronTrigger)
    assert isinstance(build_cron_trigger("30 */5 * * * *"), CronTrigger)


@pytest.mark.parametrize("expression", ["not a cron", "99 * * * *", "", "* * * * * * *"])
def test_build_cron_trigger_rejects_invalid(expression):
    with pytest.raises(ScheduleRegistrationError):
        build_cron_trigger(expression)


def test_parse_fixed_time():
    parsed = parse_fixed_time("2030-05-01T09:30:00Z")
    assert parsed.isoformat() == "2030-05-01T09:30:00+00:00"
    assert parse_fixed_time("2030-05-01T09:30:00").tzinfo is not None
    assert parse_fixed_time("tomorrow") is None
    assert parse_fixed_time(None) is None


# =============================================================================
# REGISTRY
# =============================================================================

def test_remove_job_is_idempotent(registry):
    assert registry.remove_job("missing") is False
    registry.register_cron_job("job", "*/5 * * * *", _noop)
    assert registry.has_job("job")
    assert registry.remove_job("job") is True
    assert registry.remove_job("job") is False


def test_registries_are_isolated():
    """Jobs in one registry are invisible to another"""
    first, second = SchedulerRegistry(), SchedulerRegistry()
    first.register_cron_job("job", "*/5 * * * *", _noop)
    assert first.has_job("job")
    assert not second.has_job("job")
    first.shutdown()
    second.shutdown()


def test_register_date_job_rejects_past(registry, clock):
    with pytest.raises(ScheduleRegistrationError):
        registry.register_date_job("once", clock() - timedelta(minutes=1), _noop, now=clock())


def test_interval_job_requires_positive_seconds(registry):
    with pytest.raises(ScheduleRegistrationError):
        registry.register_interval_job("bad", 0, _noop)


def test_job_info_before_start(registry):
    """Pending jobs are listed before the scheduler runs"""
    registry.register_cron_job("job", "0 9 * * *", _noop)
    info = registry.get_job_info("job")
    assert info["id"] == "job"
    assert info["next_run_time"] is None
    assert [job["id"] for job in registry.get_all_jobs()] == ["job"]


@pytest.mark.asyncio
async def test_init_and_shutdown(registry):
    """The registry starts on the running loop and drops its jobs on shutdown"""
    registry.init()
    assert registry.running
    registry.register_cron_job("job", "*/5 * * * *", _noop)
    assert registry.get_job_info("job")["next_run_time"] is not None

    registry.shutdown()
    assert not registry.running
    assert not registry.has_job("job")


# =============================================================================
# SCHEDULE MANAGER
# =============================================================================

@pytest.mark.asyncio
async def test_interval_minutes_fires_once_in_five_minutes(manager, registry, store, clock, schedule_workflow):
    """A 5-minute interval yields exactly one fire in the next five minutes and one execution per fire"""
    workflow = await schedule_workflow(scheduleType="interval", interval=5, intervalUnit="minutes")

    assert await manager.check_scheduled_workflows() == 1
    job_key = schedule_job_key(workflow.id, "s")
    assert isinstance(registry.get_trigger(job_key), CronTrigger)

    fire_times = registry.preview_fire_times(job_key, clock(), clock() + timedelta(minutes=5))
    assert fire_times == [clock() + timedelta(minutes=5)]

    for _ in fire_times:
        await manager.fire(job_key, workflow.id)
    await manager.wait_for_running()

    executions = await store.list_executions_by_workflow(workflow.id)
    assert len(executions) == 1
    execution = executions[0]
    assert execution.status == "completed"
    assert execution.data["_source"] == "scheduler"
    assert execution.data["s"]["source"] == "scheduler"
    assert manager.get_job(job_key).fire_count == 1


@pytest.mark.asyncio
async def test_seconds_interval_uses_plain_timer(manager, registry, clock, schedule_workflow):
    """Sub-minute intervals cannot be cron and run on an interval timer"""
    workflow = await schedule_workflow(scheduleType="interval", interval=30, intervalUnit="seconds")

    await manager.check_scheduled_workflows()
    job_key = schedule_job_key(workflow.id, "s")
    assert isinstance(registry.get_trigger(job_key), IntervalTrigger)

    fire_times = registry.preview_fire_times(job_key, clock(), clock() + timedelta(minutes=5))
    assert len(fire_times) == 10
    assert fire_times[0] == clock() + timedelta(seconds=30)


@pytest.mark.asyncio
async def test_large_seconds_interval_becomes_minutes(manager, registry, schedule_workflow):
    workflow = await schedule_workflow(scheduleType="interval", interval=120, intervalUnit="seconds")

    await manager.check_scheduled_workflows()
    job = manager.get_job(schedule_job_key(workflow.id, "s"))
    assert job.description == "every 2 minutes (*/2 * * * *)"


@pytest.mark.asyncio
@pytest.mark.parametrize("config", [{}, {"scheduleType": "interval"}, {"interval": 5}])
async def test_unset_schedule_defaults_to_five_minutes(manager, registry, schedule_workflow, config):
    """A bare schedule trigger runs on the five-minute interval it describes"""
    workflow = await schedule_workflow(**config)

    assert await manager.check_scheduled_workflows() == 1
    job = manager.get_job(schedule_job_key(workflow.id, "s"))
    assert job.schedule_type == "interval"
    assert job.description == "every 5 minutes (*/5 * * * *)"
    assert registry.has_job(job.job_key)


@pytest.mark.asyncio
@pytest.mark.parametrize("config", [
    {"scheduleType": "lunar"},
    {"scheduleType": "interval", "interval": "5m"},
    {"scheduleType": "interval", "interval": -1},
])
async def test_unusable_schedule_stays_unscheduled(manager, registry, schedule_workflow, config):
    workflow = await schedule_workflow(**config)

    assert await manager.check_scheduled_workflows() == 0
    assert not registry.has_job(schedule_job_key(workflow.id, "s"))


@pytest.mark.asyncio
async def test_cron_schedule(manager, registry, clock, schedule_workflow):
    workflow = await schedule_workflow(scheduleType="cron", cron="0 9 * * *")

    await manager.check_scheduled_workflows()
    job_key = schedule_job_key(workflow.id, "s")
    assert manager.is_scheduled(job_key)
    fire_times = registry.preview_fire_times(job_key, clock(), clock() + timedelta(days=2))
    assert [t.hour for t in fire_times] == [9, 9]


@pytest.mark.asyncio
async def test_invalid_cron_stays_unscheduled(manager, registry, schedule_workflow):
    """Bad expressions are logged and leave no job behind"""
    workflow = await schedule_workflow(scheduleType="cron", cron="every tuesday")

    assert await manager.check_scheduled_workflows() == 0
    job_key = schedule_job_key(workflow.id, "s")
    assert not manager.is_scheduled(job_key)
    assert not registry.has_job(job_key)


@pytest.mark.asyncio
async def test_past_fixed_time_is_skipped(manager, registry, schedule_workflow):
    workflow = await schedule_workflow(scheduleType="fixed", fixedTime="2020-01-01T00:00:00Z")

    assert await manager.check_scheduled_workflows() == 0
    assert not registry.has_job(schedule_job_key(workflow.id, "s"))


@pytest.mark.asyncio
async def test_fixed_time_fires_once_and_frees_key(manager, registry, store, clock, schedule_workflow):
    """A one-shot job leaves the registry after firing and can be registered again"""
    run_at = clock() + timedelta(hours=1)
    workflow = await schedule_workflow(scheduleType="fixed", fixedTime=run_at.isoformat())

    assert await manager.check_scheduled_workflows() == 1
    job_key = schedule_job_key(workflow.id, "s")
    assert isinstance(registry.get_trigger(job_key), DateTrigger)
    assert registry.preview_fire_times(job_key, clock(), clock() + timedelta(days=1)) == [run_at]

    await manager.fire(job_key, workflow.id)
    await manager.wait_for_running()

    assert not manager.is_scheduled(job_key)
    assert not registry.has_job(job_key)
    assert len(await store.list_executions_by_workflow(workflow.id)) == 1


@pytest.mark.asyncio
async def test_tick_does_not_duplicate_jobs(manager, schedule_workflow):
    await schedule_workflow(scheduleType="interval", interval=5, intervalUnit="minutes")

    assert await manager.check_scheduled_workflows() == 1
    assert await manager.check_scheduled_workflows() == 0
    assert len(manager.list_jobs()) == 1


@pytest.mark.asyncio
async def test_inactive_workflows_are_not_scheduled(manager, schedule_workflow):
    await schedule_workflow(status="draft", scheduleType="interval", interval=5)
    assert await manager.check_scheduled_workflows() == 0


@pytest.mark.asyncio
async def test_fire_skips_deactivated_workflow(manager, store, schedule_workflow):
    """A job firing after its workflow left active starts nothing"""
    workflow = await schedule_workflow(scheduleType="interval", interval=5)
    await manager.check_scheduled_workflows()
    await store.update_workflow(workflow.id, status="draft")

    result = await manager.fire(schedule_job_key(workflow.id, "s"), workflow.id)

    assert result is None
    assert await store.list_executions_by_workflow(workflow.id) == []


@pytest.mark.asyncio
async def test_fire_for_deleted_workflow(manager, store, schedule_workflow):
    workflow = await schedule_workflow(scheduleType="interval", interval=5)
    await store.delete_workflow(workflow.id)
    assert await manager.fire(schedule_job_key(workflow.id, "s"), workflow.id) is None


@pytest.mark.asyncio
async def test_stop_job_is_idempotent(manager, registry, schedule_workflow):
    workflow = await schedule_workflow(scheduleType="interval", interval=5)
    await manager.check_scheduled_workflows()
    job_key = schedule_job_key(workflow.id, "s")

    assert manager.stop_job(job_key) is True
    assert not registry.has_job(job_key)
    assert manager.stop_job(job_key) is False
    assert manager.stop_job("workflow_999_node_x") is False


@pytest.mark.asyncio
async def test_unschedule_workflow(manager, make_workflow):
    """Every schedule trigger of a workflow is stopped together"""
    workflow = await make_workflow(
        [node("s1", "schedule", "trigger", scheduleType="interval", interval=5),
         node("s2", "schedule", "trigger", scheduleType="cron", cron="0 * * * *")],
        [],
    )
    assert await manager.schedule_workflow(workflow) == 2

    assert manager.unschedule_workflow(workflow.id) == 2
    assert manager.list_jobs() == []


@pytest.mark.asyncio
async def test_start_and_stop(manager, registry, schedule_workflow):
    """start registers the tick and existing schedules; stop removes both"""
    await schedule_workflow(scheduleType="interval", interval=5)

    await manager.start()
    assert registry.has_job("schedule_manager_tick")
    assert len(manager.list_jobs()) == 1

    await manager.stop()
    assert not registry.has_job("schedule_manager_tick")
    assert manager.list_jobs() == []
    assert registry.get_all_jobs() == []
