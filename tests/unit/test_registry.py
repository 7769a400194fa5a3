"""Tests for jobs.registry — JobRegistry lifecycle, execution and locking."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.jobstores.base import JobLookupError

from cronwire.config.defaults import DEFAULT_SEED_JOBS
from cronwire.jobs.executor import CommandRunner
from cronwire.jobs.models import ExecutionResult, Job, JobStatus
from cronwire.jobs.registry import JOB_ALREADY_RUNNING, JOB_NOT_FOUND, JobRegistry
from cronwire.scheduler.cron_scheduler import CronScheduler


class FakeRunner:
    """Records commands; optionally blocks until ``gate`` is set."""

    def __init__(self, result: ExecutionResult | None = None) -> None:
        self.result = result or ExecutionResult(success=True, output="ok\n", returncode=0)
        self.commands: list[str] = []
        self.follow_ups: list[str] = []
        self.gate: threading.Event | None = None
        self.gated: set[str] | None = None  # None gates every command
        self.started = threading.Event()
        self.error: Exception | None = None

    def run(self, command: str) -> ExecutionResult:
        self.commands.append(command)
        self.started.set()
        if self.gate is not None and (self.gated is None or command in self.gated):
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.result

    def schedule_follow_up(self, job_name: str) -> bool:
        self.follow_ups.append(job_name)
        return True


@pytest.fixture()
def scheduler() -> CronScheduler:
    return CronScheduler()


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def registry(scheduler: CronScheduler, runner: FakeRunner) -> JobRegistry:
    return JobRegistry(scheduler, runner)  # type: ignore[arg-type]


def _trigger_expression(scheduler: CronScheduler, job_id: str) -> str:
    return str(scheduler._scheduler.get_job(job_id).trigger.expression)


def _in_background(target, *args) -> threading.Thread:
    thread = threading.Thread(target=target, args=args)
    thread.start()
    return thread


# ── create / add ────────────────────────────────────────────────────────


class TestCreate:
    def test_create_registers_and_schedules(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = Job(id="ping", name="Ping", schedule="*/5 * * * *", command="echo ok")

        assert registry.create(job) is True

        stored = registry.get("ping")
        assert stored.status == JobStatus.INACTIVE
        assert stored.last_run is None
        assert stored.next_run is not None
        assert scheduler.has_job("ping")

    def test_next_run_is_within_a_minute_for_every_minute(self, registry: JobRegistry) -> None:
        before = datetime.now(timezone.utc)
        job = registry.add("Tick", "* * * * *", "echo tick")
        assert before < job.next_run <= before + timedelta(seconds=61)

    def test_invalid_schedule_rejected(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = Job(id="bad", name="Bad", schedule="invalid", command="echo")
        assert registry.create(job) is False
        assert registry.list() == []
        assert not scheduler.has_job("bad")

    @pytest.mark.parametrize("name,command", [("", "echo"), ("Name", "  ")])
    def test_missing_name_or_command_rejected(
        self, registry: JobRegistry, name: str, command: str
    ) -> None:
        assert registry.create(Job(id="x", name=name, schedule="* * * * *", command=command)) is False
        assert len(registry) == 0

    def test_duplicate_id_rejected(self, registry: JobRegistry) -> None:
        job = Job(id="dup", name="One", schedule="* * * * *", command="echo 1")
        assert registry.create(job) is True
        assert registry.create(Job(id="dup", name="Two", schedule="* * * * *", command="echo 2")) is False
        assert registry.get("dup").name == "One"

    def test_deleted_id_is_not_reissued(self, registry: JobRegistry) -> None:
        registry.create(Job(id="gone", name="Gone", schedule="* * * * *", command="echo"))
        registry.delete("gone")
        assert registry.create(Job(id="gone", name="Again", schedule="* * * * *", command="echo")) is False

    def test_disabled_job_has_no_trigger(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Weekly", "0 9 * * 1", "df -h", enabled=False)
        assert job.next_run is None
        assert not scheduler.has_job(job.id)

    def test_create_ignores_supplied_runtime_state(self, registry: JobRegistry) -> None:
        job = Job(
            id="state",
            name="State",
            schedule="* * * * *",
            command="echo",
            status=JobStatus.ERROR,
            error_message="old",
        )
        registry.create(job)
        stored = registry.get("state")
        assert stored.status == JobStatus.INACTIVE
        assert stored.error_message is None

    def test_add_generates_unique_ids(self, registry: JobRegistry) -> None:
        first = registry.add("A", "* * * * *", "echo a")
        second = registry.add("B", "* * * * *", "echo b")
        assert first.id != second.id

    def test_seed_creates_built_in_jobs(self, registry: JobRegistry) -> None:
        created = registry.seed(DEFAULT_SEED_JOBS)
        assert len(created) == 3
        weekly = next(job for job in created if job.name == "Weekly Disk Report")
        assert weekly.enabled is False
        assert weekly.next_run is None


# ── get / list ──────────────────────────────────────────────────────────


class TestSnapshots:
    def test_get_unknown_returns_none(self, registry: JobRegistry) -> None:
        assert registry.get("missing") is None

    def test_get_returns_copy(self, registry: JobRegistry) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        job.name = "Changed"
        job.status = JobStatus.ERROR
        stored = registry.get(job.id)
        assert stored.name == "Ping"
        assert stored.status == JobStatus.INACTIVE

    def test_list_returns_copies(self, registry: JobRegistry) -> None:
        registry.add("Ping", "* * * * *", "echo ok")
        registry.list()[0].command = "rm -rf /"
        assert registry.list()[0].command == "echo ok"

    def test_contains_and_len(self, registry: JobRegistry) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert job.id in registry
        assert "missing" not in registry
        assert len(registry) == 1


# ── update ──────────────────────────────────────────────────────────────


class TestUpdate:
    def test_update_name_and_command(self, registry: JobRegistry) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert registry.update(job.id, {"name": "Pong", "command": "echo pong"}) is True
        stored = registry.get(job.id)
        assert stored.name == "Pong"
        assert stored.command == "echo pong"

    def test_update_schedule_replaces_trigger(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Ping", "*/5 * * * *", "echo ok")
        assert registry.update(job.id, {"schedule": "0 9 * * 1"}) is True

        stored = registry.get(job.id)
        assert stored.schedule == "0 9 * * 1"
        assert stored.next_run.minute == 0
        assert stored.next_run.hour == 9
        assert _trigger_expression(scheduler, job.id) == "0 9 * * 1"

    def test_invalid_schedule_leaves_job_unchanged(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Ping", "*/5 * * * *", "echo ok")
        assert registry.update(job.id, {"schedule": "invalid", "name": "New"}) is False

        stored = registry.get(job.id)
        assert stored.schedule == "*/5 * * * *"
        assert stored.name == "Ping"
        assert _trigger_expression(scheduler, job.id) == "*/5 * * * *"

    def test_unknown_field_rejected(self, registry: JobRegistry) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert registry.update(job.id, {"status": "active"}) is False
        assert registry.get(job.id).status == JobStatus.INACTIVE

    def test_empty_name_rejected(self, registry: JobRegistry) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert registry.update(job.id, {"name": ""}) is False

    def test_unknown_job(self, registry: JobRegistry) -> None:
        assert registry.update("missing", {"name": "x"}) is False

    def test_disable_through_update(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert registry.update(job.id, {"enabled": False}) is True
        stored = registry.get(job.id)
        assert stored.enabled is False
        assert stored.next_run is None
        assert not scheduler.has_job(job.id)

    def test_enable_through_update(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok", enabled=False)
        assert registry.update(job.id, {"enabled": True}) is True
        assert registry.get(job.id).next_run is not None
        assert scheduler.has_job(job.id)


# ── delete / enable / disable ───────────────────────────────────────────


class TestLifecycle:
    def test_delete(self, registry: JobRegistry, scheduler: CronScheduler) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")
        assert registry.delete(job.id) is True
        assert registry.get(job.id) is None
        assert registry.list() == []
        assert not scheduler.has_job(job.id)

    def test_delete_unknown(self, registry: JobRegistry) -> None:
        assert registry.delete("missing") is False

    def test_disable_then_enable(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        job = registry.add("Ping", "* * * * *", "echo ok")

        assert registry.disable(job.id) is True
        stored = registry.get(job.id)
        assert stored.enabled is False
        assert stored.status == JobStatus.INACTIVE
        assert stored.next_run is None
        assert not scheduler.has_job(job.id)

        assert registry.enable(job.id) is True
        stored = registry.get(job.id)
        assert stored.enabled is True
        assert stored.next_run is not None
        assert scheduler.has_job(job.id)

    def test_enable_clears_error_status(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        job = registry.add("Ping", "* * * * *", "false")
        runner.result = ExecutionResult(success=False, error="Command failed")
        registry._fire(job.id)
        assert registry.get(job.id).status == JobStatus.ERROR

        registry.enable(job.id)
        assert registry.get(job.id).status == JobStatus.INACTIVE

    def test_enable_disable_unknown(self, registry: JobRegistry) -> None:
        assert registry.enable("missing") is False
        assert registry.disable("missing") is False

    def test_close_stops_all_triggers(
        self, registry: JobRegistry, scheduler: CronScheduler
    ) -> None:
        first = registry.add("A", "* * * * *", "echo a")
        second = registry.add("B", "* * * * *", "echo b")
        registry.close()
        assert not scheduler.has_job(first.id)
        assert not scheduler.has_job(second.id)


# ── Execution ───────────────────────────────────────────────────────────


class TestExecution:
    def test_trigger_success(self, registry: JobRegistry, runner: FakeRunner) -> None:
        job = registry.add("Ping", "*/5 * * * *", "echo ok")

        registry._fire(job.id)

        stored = registry.get(job.id)
        assert runner.commands == ["echo ok"]
        assert stored.status == JobStatus.INACTIVE
        assert stored.last_run is not None
        assert stored.error_message is None
        assert stored.next_run > stored.last_run
        assert runner.follow_ups == ["Ping"]

    def test_trigger_failure_sets_error(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.result = ExecutionResult(success=False, error="Command failed with exit code 1: false")
        job = registry.add("Broken", "* * * * *", "false")

        registry._fire(job.id)

        stored = registry.get(job.id)
        assert stored.status == JobStatus.ERROR
        assert stored.error_message == "Command failed with exit code 1: false"

    def test_error_is_not_sticky(self, registry: JobRegistry, runner: FakeRunner) -> None:
        job = registry.add("Flaky", "* * * * *", "maybe")
        runner.result = ExecutionResult(success=False, error="boom")
        registry._fire(job.id)
        runner.result = ExecutionResult(success=True, output="fine")
        registry._fire(job.id)

        stored = registry.get(job.id)
        assert stored.status == JobStatus.INACTIVE
        assert stored.error_message is None

    def test_runner_crash_is_recorded(self, registry: JobRegistry, runner: FakeRunner) -> None:
        runner.error = RuntimeError("runner exploded")
        job = registry.add("Crash", "* * * * *", "echo")

        registry._fire(job.id)  # should not raise

        stored = registry.get(job.id)
        assert stored.status == JobStatus.ERROR
        assert stored.error_message == "runner exploded"

    def test_trigger_skips_disabled_job(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        job = registry.add("Off", "* * * * *", "echo", enabled=False)
        registry._fire(job.id)
        assert runner.commands == []
        assert registry.get(job.id).last_run is None

    def test_trigger_for_deleted_job_is_ignored(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        registry._fire("missing")
        assert runner.commands == []

    def test_execute_now_runs_disabled_job(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        job = registry.add("Manual", "* * * * *", "echo manual", enabled=False)

        result = registry.execute_now(job.id)

        assert result.success is True
        stored = registry.get(job.id)
        assert stored.last_run is not None
        assert stored.next_run is None
        assert stored.status == JobStatus.INACTIVE
        assert runner.follow_ups == []

    def test_execute_now_leaves_next_run(self, registry: JobRegistry) -> None:
        job = registry.add("Manual", "0 9 * * 1", "echo")
        registry.execute_now(job.id)
        assert registry.get(job.id).next_run == job.next_run

    def test_execute_now_unknown(self, registry: JobRegistry) -> None:
        result = registry.execute_now("missing")
        assert result.success is False
        assert result.error == JOB_NOT_FOUND

    def test_status_is_active_while_running(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.gate = threading.Event()
        job = registry.add("Slow", "* * * * *", "sleep")

        thread = _in_background(registry._fire, job.id)
        assert runner.started.wait(5)
        assert registry.get(job.id).status == JobStatus.ACTIVE

        runner.gate.set()
        thread.join(5)
        assert registry.get(job.id).status == JobStatus.INACTIVE

    def test_overlapping_run_is_dropped(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.gate = threading.Event()
        job = registry.add("Slow", "* * * * *", "sleep")

        thread = _in_background(registry._fire, job.id)
        assert runner.started.wait(5)

        result = registry.execute_now(job.id)
        registry._fire(job.id)

        assert result.success is False
        assert result.error == JOB_ALREADY_RUNNING
        assert runner.commands == ["sleep"]

        runner.gate.set()
        thread.join(5)
        assert registry.get(job.id).status == JobStatus.INACTIVE

    def test_delete_mid_run_discards_result(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.gate = threading.Event()
        job = registry.add("Slow", "* * * * *", "sleep")

        thread = _in_background(registry._fire, job.id)
        assert runner.started.wait(5)
        assert registry.delete(job.id) is True

        runner.gate.set()
        thread.join(5)
        assert not thread.is_alive()
        assert registry.get(job.id) is None
        assert len(registry) == 0

    def test_disable_mid_run_keeps_inactive(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.gate = threading.Event()
        runner.result = ExecutionResult(success=False, error="boom")
        job = registry.add("Slow", "* * * * *", "sleep")

        thread = _in_background(registry._fire, job.id)
        assert runner.started.wait(5)
        registry.disable(job.id)

        runner.gate.set()
        thread.join(5)
        stored = registry.get(job.id)
        assert stored.status == JobStatus.INACTIVE
        assert stored.next_run is None

    def test_other_jobs_run_while_one_is_busy(
        self, registry: JobRegistry, runner: FakeRunner
    ) -> None:
        runner.gate = threading.Event()
        runner.gated = {"sleep"}
        slow = registry.add("Slow", "* * * * *", "sleep")
        fast = registry.add("Fast", "* * * * *", "echo fast")

        thread = _in_background(registry._fire, slow.id)
        assert runner.started.wait(5)
        try:
            result = registry.execute_now(fast.id)

            assert result.success is True
            assert registry.get(fast.id).status == JobStatus.INACTIVE
            assert registry.get(slow.id).status == JobStatus.ACTIVE
        finally:
            runner.gate.set()
            thread.join(5)

        assert registry.get(slow.id).status == JobStatus.INACTIVE
        assert runner.commands == ["sleep", "echo fast"]


# ── End to end with a real shell ────────────────────────────────────────


class TestWithCommandRunner:
    def test_ping_job(self, scheduler: CronScheduler) -> None:
        registry = JobRegistry(scheduler, CommandRunner())
        job = registry.add("Ping", "*/5 * * * *", "echo ok")

        registry._fire(job.id)

        stored = registry.get(job.id)
        assert stored.status == JobStatus.INACTIVE
        assert stored.last_run is not None
        assert stored.error_message is None

    def test_failing_command(self, scheduler: CronScheduler) -> None:
        registry = JobRegistry(scheduler, CommandRunner())
        job = registry.add("Fail", "* * * * *", "exit 4")

        result = registry.execute_now(job.id)

        assert result.success is False
        stored = registry.get(job.id)
        assert stored.status == JobStatus.ERROR
        assert "exit code 4" in stored.error_message


# ── Firing through a running scheduler ──────────────────────────────────


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.02)
    return True


class TestScheduledFiring:
    # Yearly schedules keep natural fire times out of the test window;
    # the first fire is pulled forward with modify_job.

    def test_trigger_fires_on_worker_pool(
        self, scheduler: CronScheduler, runner: FakeRunner
    ) -> None:
        registry = JobRegistry(scheduler, runner)  # type: ignore[arg-type]
        job = registry.add("Ping", "0 0 1 1 *", "echo ping")

        scheduler.start()
        try:
            scheduler._scheduler.modify_job(job.id, next_run_time=datetime.now(timezone.utc))
            assert _wait_until(lambda: registry.get(job.id).last_run is not None)
        finally:
            scheduler.shutdown()

        stored = registry.get(job.id)
        assert runner.commands == ["echo ping"]
        assert runner.follow_ups == ["Ping"]
        assert stored.status == JobStatus.INACTIVE
        assert stored.next_run > stored.last_run

    def test_disabled_job_is_not_fired(
        self, scheduler: CronScheduler, runner: FakeRunner
    ) -> None:
        registry = JobRegistry(scheduler, runner)  # type: ignore[arg-type]
        active = registry.add("Active", "0 0 1 1 *", "echo active")
        paused = registry.add("Paused", "0 0 1 1 *", "echo paused")
        registry.disable(paused.id)

        scheduler.start()
        try:
            now = datetime.now(timezone.utc)
            assert not scheduler.has_job(paused.id)
            with pytest.raises(JobLookupError):
                scheduler._scheduler.modify_job(paused.id, next_run_time=now)

            scheduler._scheduler.modify_job(active.id, next_run_time=now)
            assert _wait_until(lambda: registry.get(active.id).last_run is not None)
        finally:
            scheduler.shutdown()

        assert runner.commands == ["echo active"]
        assert registry.get(paused.id).last_run is None

    def test_re_enabled_job_fires_again(
        self, scheduler: CronScheduler, runner: FakeRunner
    ) -> None:
        registry = JobRegistry(scheduler, runner)  # type: ignore[arg-type]
        job = registry.add("Toggle", "0 0 1 1 *", "echo toggle", enabled=False)

        scheduler.start()
        try:
            registry.enable(job.id)
            scheduler._scheduler.modify_job(job.id, next_run_time=datetime.now(timezone.utc))
            assert _wait_until(lambda: registry.get(job.id).last_run is not None)
        finally:
            scheduler.shutdown()

        assert runner.commands == ["echo toggle"]
