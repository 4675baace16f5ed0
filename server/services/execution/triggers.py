"""Trigger node output.

Trigger nodes start a run; executing one records what fired it. Schedule
triggers additionally describe their schedule.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from constants import (
    DEFAULT_INTERVAL_UNIT,
    DEFAULT_SCHEDULE_INTERVAL,
    DEFAULT_SCHEDULE_TYPE,
    INTERVAL_UNITS,
    SCHEDULE_SUBTYPE,
)

_UNIT_DELTAS = {
    'seconds': lambda n: timedelta(seconds=n),
    'minutes': lambda n: timedelta(minutes=n),
    'hours': lambda n: timedelta(hours=n),
    'days': lambda n: timedelta(days=n),
}


def as_positive_int(value: Any, default: int) -> int:
    """Positive int from config, falling back to default for 0/None/invalid."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def schedule_type_of(config: Dict[str, Any]) -> str:
    return config.get('scheduleType') or DEFAULT_SCHEDULE_TYPE


def interval_unit_of(config: Dict[str, Any]) -> str:
    unit = config.get('intervalUnit')
    return unit if unit in INTERVAL_UNITS else DEFAULT_INTERVAL_UNIT


def calculate_next_run(interval: int, unit: str, now: Optional[datetime] = None) -> str:
    """ISO timestamp of now + interval. Unknown units add nothing."""
    now = now or datetime.now(timezone.utc)
    delta = _UNIT_DELTAS.get(unit)
    return (now + delta(interval) if delta else now).isoformat()


def describe_schedule(config: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Summarize a schedule trigger's config."""
    schedule_type = schedule_type_of(config)

    if schedule_type == 'interval':
        interval = as_positive_int(config.get('interval'), DEFAULT_SCHEDULE_INTERVAL)
        unit = interval_unit_of(config)
        return {
            "success": True,
            "message": f"Scheduled to run every {interval} {unit}",
            "nextRun": calculate_next_run(interval, unit, now),
        }
    if schedule_type == 'cron':
        return {
            "success": True,
            "message": f"Scheduled with cron expression: {config.get('cron')}",
            "cronExpression": config.get('cron'),
        }
    if schedule_type == 'fixed':
        return {
            "success": True,
            "message": f"Scheduled to run at fixed time: {config.get('fixedTime')}",
            "scheduledTime": config.get('fixedTime'),
        }
    return {"success": False, "message": "Unsupported schedule type"}


def build_trigger_output(subtype: str, config: Dict[str, Any], data: Dict[str, Any],
                         now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    output = {
        "success": True,
        "message": f"{subtype} trigger fired",
        "source": data.get("_source", "manual"),
        "triggeredAt": now.isoformat(),
    }
    if subtype == SCHEDULE_SUBTYPE:
        output.update(describe_schedule(config, now))
    return output
