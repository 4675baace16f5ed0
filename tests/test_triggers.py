"""Tests for trigger node output."""

from datetime import datetime, timezone

from services.execution.triggers import build_trigger_output, calculate_next_run, describe_schedule

NOW = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def test_calculate_next_run():
    assert calculate_next_run(2, "hours", NOW) == "2026-03-01T10:00:00+00:00"
    assert calculate_next_run(3, "fortnights", NOW) == NOW.isoformat()


def test_describe_schedule_variants():
    assert describe_schedule({"scheduleType": "cron", "cron": "0 9 * * *"}, NOW)["cronExpression"] == "0 9 * * *"
    fixed = describe_schedule({"scheduleType": "fixed", "fixedTime": "2026-03-02T00:00:00Z"}, NOW)
    assert fixed["scheduledTime"] == "2026-03-02T00:00:00Z"
    assert describe_schedule({"scheduleType": "lunar"}, NOW) == {
        "success": False, "message": "Unsupported schedule type"}


def test_interval_defaults():
    """An interval with no settings describes the five-minute default"""
    result = describe_schedule({"scheduleType": "interval"}, NOW)
    assert result["message"] == "Scheduled to run every 5 minutes"
    assert result["nextRun"] == "2026-03-01T08:05:00+00:00"


def test_manual_trigger_output():
    output = build_trigger_output("manual", {}, {}, NOW)
    assert output == {
        "success": True,
        "message": "manual trigger fired",
        "source": "manual",
        "triggeredAt": NOW.isoformat(),
    }


def test_missing_schedule_type_defaults_to_interval():
    assert describe_schedule({}, NOW)["message"] == "Scheduled to run every 5 minutes"


def test_bad_interval_values_fall_back():
    """A malformed interval only affects the description, never the run"""
    output = build_trigger_output(
        "schedule", {"scheduleType": "interval", "interval": "5m", "intervalUnit": "hours"}, {}, NOW)
    assert output["success"] is True
    assert output["message"] == "Scheduled to run every 5 hours"

    result = describe_schedule({"scheduleType": "interval", "interval": 2, "intervalUnit": "weeks"}, NOW)
    assert result["message"] == "Scheduled to run every 2 minutes"
