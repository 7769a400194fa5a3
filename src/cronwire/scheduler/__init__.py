"""Scheduler package — cron parsing, APScheduler wrapper and serve-mode runner."""

from cronwire.scheduler.cron import next_run, parse_cron, validate
from cronwire.scheduler.cron_scheduler import CronScheduler, ScheduleTrigger

__all__ = [
    "CronScheduler",
    "ScheduleTrigger",
    "next_run",
    "parse_cron",
    "validate",
]
