"""Job registry — owns job definitions, their triggers and execution state.

All mutation goes through :class:`JobRegistry`. Two levels of locking keep
state consistent while triggers fire on the scheduler's worker threads:

* a registry-wide ``RLock`` guards the job map, every field of every job
  record and the start/stop of triggers;
* a per-job execution lock guarantees a job never runs twice at once. A
  trigger (or ``execute_now``) that finds it held is dropped and logged.

The command itself runs with only the per-job lock held, so a slow command
never blocks other jobs, API calls or the broadcast hub.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, tzinfo
from typing import TYPE_CHECKING, Any

from cronwire.jobs.models import ExecutionResult, Job, JobStatus
from cronwire.scheduler.cron import next_run, validate

if TYPE_CHECKING:
    from cronwire.jobs.executor import CommandRunner
    from cronwire.scheduler.cron_scheduler import CronScheduler

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS: frozenset[str] = frozenset({"name", "schedule", "command", "enabled"})

JOB_NOT_FOUND = "Job not found"
JOB_ALREADY_RUNNING = "Job is already running"


class _Entry:
    """Live registry slot: the mutable job record plus its run lock."""

    __slots__ = ("job", "run_lock", "removed")

    def __init__(self, job: Job) -> None:
        self.job = job
        self.run_lock = threading.Lock()
        self.removed = False


def _is_text(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


class JobRegistry:
    """Mutable collection of jobs bound to a :class:`CronScheduler`."""

    def __init__(self, scheduler: CronScheduler, runner: CommandRunner) -> None:
        self._scheduler = scheduler
        self._runner = runner
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._issued_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def timezone(self) -> tzinfo:
        """Zone schedules are evaluated in."""
        return self._scheduler.timezone

    def _now(self) -> datetime:
        return datetime.now(self._scheduler.timezone)

    def _start_trigger(self, job: Job) -> None:
        self._scheduler.add_job(self._fire, job.schedule, job.id, job_id=job.id)

    def _stop_trigger(self, job_id: str) -> None:
        self._scheduler.remove_job(job_id)

    def _refresh_next_run(self, job: Job) -> None:
        if job.enabled:
            job.next_run = next_run(job.schedule, self._now(), self._scheduler.timezone)
        else:
            job.next_run = None

    # ------------------------------------------------------------------
    # Definition management
    # ------------------------------------------------------------------

    def create(self, job: Job) -> bool:
        """Register *job* and start its trigger when enabled.

        Returns False for an invalid schedule, missing name/command or an
        id the registry has already issued.
        """
        if not validate(job.schedule):
            logger.warning("Rejected job '%s': invalid schedule '%s'", job.name, job.schedule)
            return False
        if not (_is_text(job.name) and _is_text(job.command)):
            logger.warning("Rejected job '%s': name and command are required", job.id)
            return False

        with self._lock:
            if job.id in self._issued_ids:
                logger.warning("Rejected job '%s': duplicate id '%s'", job.name, job.id)
                return False

            record = dataclasses.replace(
                job,
                status=JobStatus.INACTIVE,
                last_run=None,
                next_run=None,
                error_message=None,
            )
            if record.enabled:
                self._start_trigger(record)
            self._refresh_next_run(record)
            self._entries[record.id] = _Entry(record)
            self._issued_ids.add(record.id)

        logger.info(
            "Created job '%s' (%s) schedule='%s' enabled=%s",
            record.name,
            record.id,
            record.schedule,
            record.enabled,
        )
        return True

    def add(
        self,
        name: str,
        schedule: str,
        command: str,
        enabled: bool = True,
    ) -> Job | None:
        """Create a job with a fresh id; return its snapshot or None."""
        job = Job.new(name=name, schedule=schedule, command=command, enabled=enabled)
        if not self.create(job):
            return None
        return self.get(job.id)

    def seed(self, definitions: Iterable[Mapping[str, Any]]) -> list[Job]:
        """Create every definition in *definitions*; return those created."""
        created = []
        for definition in definitions:
            job = self.add(
                name=str(definition["name"]),
                schedule=str(definition["schedule"]),
                command=str(definition["command"]),
                enabled=bool(definition.get("enabled", True)),
            )
            if job is not None:
                created.append(job)
        return created

    def update(self, job_id: str, changes: Mapping[str, Any]) -> bool:
        """Apply a partial update.

        Only ``name``, ``schedule``, ``command`` and ``enabled`` may change.
        A new schedule replaces the trigger; toggling ``enabled`` starts or
        stops it. Nothing is modified when any field is rejected.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            logger.warning("Rejected update of job '%s': unknown fields %s", job_id, sorted(unknown))
            return False
        if "schedule" in changes and not validate(changes["schedule"]):
            logger.warning(
                "Rejected update of job '%s': invalid schedule '%s'",
                job_id,
                changes["schedule"],
            )
            return False
        for key in ("name", "command"):
            if key in changes and not _is_text(changes[key]):
                logger.warning("Rejected update of job '%s': empty %s", job_id, key)
                return False

        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                logger.warning("Cannot update unknown job '%s'", job_id)
                return False

            job = entry.job
            was_enabled = job.enabled
            schedule_changed = "schedule" in changes and changes["schedule"] != job.schedule

            if "name" in changes:
                job.name = changes["name"]
            if "command" in changes:
                job.command = changes["command"]
            if "enabled" in changes:
                job.enabled = bool(changes["enabled"])
            if schedule_changed:
                job.schedule = changes["schedule"]

            if schedule_changed or job.enabled != was_enabled:
                self._stop_trigger(job_id)
                if job.enabled:
                    self._start_trigger(job)
            if was_enabled and not job.enabled:
                job.status = JobStatus.INACTIVE
            self._refresh_next_run(job)

        logger.info("Updated job '%s' (%s): %s", job.name, job_id, sorted(changes))
        return True

    def delete(self, job_id: str) -> bool:
        """Stop the job's trigger, then remove it.

        An execution already in flight finishes; its result is discarded.
        """
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                logger.warning("Cannot delete unknown job '%s'", job_id)
                return False
            self._stop_trigger(job_id)
            del self._entries[job_id]
            entry.removed = True

        logger.info("Deleted job '%s' (%s)", entry.job.name, job_id)
        return True

    def enable(self, job_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                logger.warning("Cannot enable unknown job '%s'", job_id)
                return False
            job = entry.job
            if not job.enabled or not self._scheduler.has_job(job_id):
                job.enabled = True
                self._start_trigger(job)
            if not entry.run_lock.locked():
                job.status = JobStatus.INACTIVE
            self._refresh_next_run(job)

        logger.info("Enabled job '%s' (%s)", job.name, job_id)
        return True

    def disable(self, job_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                logger.warning("Cannot disable unknown job '%s'", job_id)
                return False
            job = entry.job
            job.enabled = False
            self._stop_trigger(job_id)
            job.status = JobStatus.INACTIVE
            job.next_run = None

        logger.info("Disabled job '%s' (%s)", job.name, job_id)
        return True

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Job | None:
        """Return a copy of the job, or None if unknown."""
        with self._lock:
            entry = self._entries.get(job_id)
            return dataclasses.replace(entry.job) if entry is not None else None

    def list(self) -> list[Job]:
        """Return copies of every registered job."""
        with self._lock:
            return [dataclasses.replace(entry.job) for entry in self._entries.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._entries

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_now(self, job_id: str) -> ExecutionResult:
        """Run the job's command immediately, regardless of ``enabled``.

        Updates ``status``/``last_run``/``error_message`` like a trigger
        would, but leaves ``next_run`` alone.
        """
        result = self._execute(job_id, triggered=False)
        if result is None:
            logger.warning("Cannot execute unknown job '%s'", job_id)
            return ExecutionResult(success=False, error=JOB_NOT_FOUND)
        return result

    def _fire(self, job_id: str) -> None:
        """Trigger callback, runs on a scheduler worker thread."""
        try:
            self._execute(job_id, triggered=True)
        except Exception:
            logger.exception("Unhandled error while firing job '%s'", job_id)

    def _execute(self, job_id: str, triggered: bool) -> ExecutionResult | None:
        """Run one execution; None when the job is unknown or the trigger is skipped."""
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                return None
            job = entry.job
            if triggered and not job.enabled:
                logger.debug("Skipping trigger for disabled job '%s'", job_id)
                return None
            if not entry.run_lock.acquire(blocking=False):
                logger.warning(
                    "Job '%s' (%s) is still running, dropping %s",
                    job.name,
                    job_id,
                    "scheduled run" if triggered else "manual run",
                )
                return ExecutionResult(success=False, error=JOB_ALREADY_RUNNING)

            started_at = self._now()
            job.last_run = started_at
            job.status = JobStatus.ACTIVE
            if triggered:
                job.next_run = next_run(job.schedule, started_at, self._scheduler.timezone)
            name, command = job.name, job.command

        logger.info(
            "[%s] %s STARTING: %s - Command: %s",
            started_at.isoformat(timespec="seconds"),
            "CRON" if triggered else "MANUAL",
            name,
            command,
        )
        try:
            try:
                result = self._runner.run(command)
            except Exception as exc:
                logger.exception("Runner crashed for job '%s' (%s)", name, job_id)
                result = ExecutionResult(success=False, error=str(exc) or type(exc).__name__)
            self._record_result(entry, result, triggered)
        finally:
            entry.run_lock.release()

        if triggered:
            self._runner.schedule_follow_up(name)
        return result

    def _record_result(self, entry: _Entry, result: ExecutionResult, triggered: bool) -> None:
        with self._lock:
            job = entry.job
            if entry.removed:
                logger.info("Job '%s' (%s) was deleted mid-run, result discarded", job.name, job.id)
            elif triggered and not job.enabled:
                logger.info("Job '%s' (%s) was disabled mid-run, status left inactive", job.name, job.id)
            elif result.success:
                job.status = JobStatus.INACTIVE
                job.error_message = None
            else:
                job.status = JobStatus.ERROR
                job.error_message = result.error or "Command failed"
            name, job_id = job.name, job.id

        logger.info(
            "Job: %s (%s) - %s\nOutput: %s%s",
            name,
            job_id,
            "SUCCESS" if result.success else "FAILED",
            result.output,
            f"\nError: {result.error}" if result.error else "",
        )
        if result.error:
            logger.error("CRON ERROR: %s", result.error)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop every trigger. In-flight executions are left to finish."""
        with self._lock:
            for job_id in list(self._entries):
                self._stop_trigger(job_id)
        logger.info("Job registry closed")
