"""
Scheduler Registry using APScheduler.

Owns one AsyncIOScheduler per instance, so isolated registries can coexist
(one per engine, one per test). Cron, interval and one-shot date jobs are
registered by job id; removal is idempotent.
"""
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Any, Callable, Dict, List, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from core.logging import get_logger
from services.execution.exceptions import ScheduleRegistrationError

logger = get_logger(__name__)


def build_cron_trigger(cron_expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a CronTrigger from a 5-field (minute hour day month weekday) or
    6-field (second minute hour day month weekday) expression.

    Raises:
        ScheduleRegistrationError: If the expression is not valid cron
    """
    parts = (cron_expression or "").split()
    try:
        if len(parts) == 6:
            return CronTrigger(
                second=parts[0],
                minute=parts[1],
                hour=parts[2],
                day=parts[3],
                month=parts[4],
                day_of_week=parts[5],
                timezone=timezone
            )
        if len(parts) == 5:
            return CronTrigger(
                second='0',
                minute=parts[0],
                hour=parts[1],
                day=parts[2],
                month=parts[3],
                day_of_week=parts[4],
                timezone=timezone
            )
    except (ValueError, TypeError) as e:
        raise ScheduleRegistrationError(f"Invalid cron expression '{cron_expression}': {e}") from e
    raise ScheduleRegistrationError(
        f"Invalid cron expression '{cron_expression}': expected 5 or 6 fields, got {len(parts)}")


class SchedulerRegistry:
    """Explicitly owned timer registry with init()/shutdown() lifecycle."""

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def scheduler(self) -> AsyncIOScheduler:
        """Underlying scheduler. Jobs can be added before init()."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def init(self) -> None:
        """Start the scheduler if not already running. Needs a running event loop."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler registry started", timezone=self.timezone)

    def shutdown(self) -> None:
        """Stop the scheduler and drop all jobs."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler registry shut down")
        self._scheduler = None

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def _add(self, job_id: str, trigger: BaseTrigger, callback: Callable, kwargs: Dict[str, Any]) -> str:
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            replace_existing=True,
            kwargs=kwargs,
            misfire_grace_time=None,
            coalesce=True,
        )
        return job_id

    def register_cron_job(
        self,
        job_id: str,
        cron_expression: str,
        callback: Callable,
        timezone: Optional[str] = None,
        **kwargs
    ) -> str:
        """
        Register a cron job.

        Args:
            job_id: Unique identifier for the job
            cron_expression: 5- or 6-field cron expression
            callback: Async function to call when job fires
            timezone: Timezone for schedule (default: registry timezone)
            **kwargs: Additional arguments passed to the callback

        Returns:
            The job_id

        Raises:
            ScheduleRegistrationError: If the expression is invalid
        """
        trigger = build_cron_trigger(cron_expression, timezone or self.timezone)
        self._add(job_id, trigger, callback, kwargs)
        logger.info("Registered cron job", job_id=job_id, expression=cron_expression)
        return job_id

    def register_interval_job(self, job_id: str, seconds: int, callback: Callable,
                              start_date: Optional[datetime] = None, **kwargs) -> str:
        """Register a plain repeating timer firing every `seconds`."""
        if not seconds or seconds <= 0:
            raise ScheduleRegistrationError(f"Interval must be positive, got {seconds}")
        trigger = IntervalTrigger(seconds=seconds, start_date=start_date, timezone=self.timezone)
        self._add(job_id, trigger, callback, kwargs)
        logger.info("Registered interval job", job_id=job_id, seconds=seconds)
        return job_id

    def register_date_job(self, job_id: str, run_date: datetime, callback: Callable,
                          now: Optional[datetime] = None, **kwargs) -> str:
        """Register a one-shot job. APScheduler drops it after it fires.

        Raises:
            ScheduleRegistrationError: If run_date is not in the future
        """
        now = now or datetime.now(dt_timezone.utc)
        if run_date <= now:
            raise ScheduleRegistrationError(f"Scheduled time {run_date.isoformat()} is in the past")
        trigger = DateTrigger(run_date=run_date, timezone=self.timezone)
        self._add(job_id, trigger, callback, kwargs)
        logger.info("Registered one-shot job", job_id=job_id, run_date=run_date.isoformat())
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a job.

        Returns:
            True if job was removed, False if not found
        """
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(job_id)
            logger.info("Removed job", job_id=job_id)
            return True
        except JobLookupError:
            logger.debug("Job not found", job_id=job_id)
            return False

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def has_job(self, job_id: str) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(job_id) is not None

    def get_trigger(self, job_id: str) -> Optional[BaseTrigger]:
        job = self._scheduler.get_job(job_id) if self._scheduler else None
        return job.trigger if job else None

    @staticmethod
    def _job_info(job: Job) -> Dict[str, Any]:
        next_run_time = getattr(job, "next_run_time", None)  # unset until the scheduler starts
        return {
            "id": job.id,
            "next_run_time": next_run_time.isoformat() if next_run_time else None,
            "trigger": str(job.trigger)
        }

    def get_job_info(self, job_id: str) -> Optional[Dict]:
        """Dict with job info or None if not found."""
        job = self._scheduler.get_job(job_id) if self._scheduler else None
        return self._job_info(job) if job else None

    def get_all_jobs(self) -> List[Dict]:
        if self._scheduler is None:
            return []
        return [self._job_info(job) for job in self._scheduler.get_jobs()]

    def preview_fire_times(self, job_id: str, start: datetime, end: datetime,
                           limit: int = 1000) -> List[datetime]:
        """Fire times of a job in (start, end], computed from its trigger."""
        trigger = self.get_trigger(job_id)
        if trigger is None:
            return []
        fire_times: List[datetime] = []
        previous = None
        now = start
        while len(fire_times) < limit:
            next_fire = trigger.get_next_fire_time(previous, now)
            if next_fire is None or next_fire > end:
                break
            if next_fire > start:
                fire_times.append(next_fire)
            previous = next_fire
            # Cron triggers match `now` itself, so step past the last fire
            now = next_fire + timedelta(microseconds=1)
        return fire_times
