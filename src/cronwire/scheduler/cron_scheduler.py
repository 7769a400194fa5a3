"""Thin wrapper around APScheduler v3 for cron-based job scheduling."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.date import DateTrigger

from cronwire.scheduler.cron import next_after, parse_cron, resolve_timezone

logger = logging.getLogger(__name__)


class ScheduleTrigger(BaseTrigger):
    """APScheduler trigger that evaluates a cron expression with croniter.

    Fire times come from the same helper the registry uses for
    ``next_run``.
    """

    __slots__ = ("expression", "timezone")

    def __init__(self, expression: str, timezone: tzinfo) -> None:
        self.expression = expression
        self.timezone = timezone

    def get_next_fire_time(
        self,
        previous_fire_time: datetime | None,
        now: datetime,
    ) -> datetime | None:
        reference = now if previous_fire_time is None else min(previous_fire_time, now)
        return next_after(self.expression, reference.astimezone(self.timezone))

    def __str__(self) -> str:
        return f"cron[{self.expression}]"

    def __repr__(self) -> str:
        return f"<ScheduleTrigger ({self.expression!r}, timezone='{self.timezone}')>"


class CronScheduler:
    """Manages cron-triggered background jobs via APScheduler.

    Every firing runs on the thread pool, so a long-running command never
    delays other jobs' triggers. ``max_instances=1`` keeps APScheduler from
    starting a second copy of a job that is still running.
    """

    def __init__(self, timezone: str = "UTC", max_workers: int = 10) -> None:
        self.timezone = resolve_timezone(timezone)
        self._scheduler = BackgroundScheduler(
            timezone=self.timezone,
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
        )

    def add_job(
        self,
        func: Callable[..., Any],
        cron_expr: str,
        job_id: str,
        **kwargs: Any,
    ) -> None:
        """Schedule a function to run on a cron schedule.

        Args:
            func: Callable to execute.
            cron_expr: 5-field cron expression (e.g. "30 2 * * *").
            job_id: Unique identifier for this job.
            **kwargs: Additional keyword arguments passed to func.

        Raises:
            ValueError: If *cron_expr* is not a valid schedule.
        """
        trigger = ScheduleTrigger(parse_cron(cron_expr), self.timezone)
        self._scheduler.add_job(
            func, trigger, id=job_id, kwargs=kwargs, replace_existing=True
        )
        logger.info("Scheduled job '%s' with cron '%s'", job_id, cron_expr)

    def remove_job(self, job_id: str) -> bool:
        """Stop a job's trigger. Returns False if it was not scheduled."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("Unscheduled job '%s'", job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        """Whether a trigger is currently registered under *job_id*."""
        return self._scheduler.get_job(job_id) is not None

    def run_later(
        self,
        func: Callable[..., Any],
        delay_seconds: float,
        **kwargs: Any,
    ) -> None:
        """Run *func* once, *delay_seconds* from now, on the worker pool."""
        run_date = datetime.now(self.timezone) + timedelta(seconds=delay_seconds)
        self._scheduler.add_job(func, DateTrigger(run_date=run_date), kwargs=kwargs)
        logger.debug("Queued one-shot %s for %s", getattr(func, "__name__", func), run_date)

    def start(self) -> None:
        """Start the scheduler."""
        self._scheduler.start()
        logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the scheduler."""
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Scheduler shut down")

    @property
    def running(self) -> bool:
        """Whether the scheduler is currently running."""
        return self._scheduler.running
