"""Execution runner — runs one shell command and captures its output.

stdout and stderr are merged into a single ``output`` string. Failures
(non-zero exit, timeout, spawn error) never raise: they come back as an
:class:`ExecutionResult` with ``success=False`` and whatever output was
captured before the failure.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from cronwire.jobs.models import ExecutionResult

if TYPE_CHECKING:
    from cronwire.config.settings import Settings
    from cronwire.scheduler.cron_scheduler import CronScheduler

logger = logging.getLogger(__name__)


def _kill_group(process: subprocess.Popen[str]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass  # group already gone


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class CommandRunner:
    """Runs job commands through the shell, optionally wrapped.

    Args:
        wrapper: Prefix command; the job command is shell-quoted and
            appended to it (``"run.sh execute" + " 'echo hi'"``).
        timeout: Seconds before the command is killed; None for no limit.
        follow_up_command: Diagnostic command queued after triggered runs.
        follow_up_delay: Seconds between a run finishing and the follow-up.
        scheduler: Scheduler used to queue the follow-up off-thread.
    """

    def __init__(
        self,
        wrapper: str = "",
        timeout: float | None = None,
        follow_up_command: str = "",
        follow_up_delay: float = 10.0,
        scheduler: CronScheduler | None = None,
    ) -> None:
        self.wrapper = wrapper.strip()
        self.timeout = timeout or None
        self.follow_up_command = follow_up_command.strip()
        self.follow_up_delay = follow_up_delay
        self._scheduler = scheduler

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scheduler: CronScheduler | None = None,
    ) -> CommandRunner:
        return cls(
            wrapper=settings.command_wrapper,
            timeout=settings.command_timeout_seconds,
            follow_up_command=settings.follow_up_command,
            follow_up_delay=settings.follow_up_delay_seconds,
            scheduler=scheduler,
        )

    def build_command(self, command: str) -> str:
        """Return the exact shell line that will be executed."""
        if not self.wrapper:
            return command
        return f"{self.wrapper} {shlex.quote(command)}"

    def run(self, command: str) -> ExecutionResult:
        """Run *command* to completion and return its result.

        The shell starts a new session, so a timeout kills the whole
        process group rather than just the shell.
        """
        full_command = self.build_command(command)
        logger.info("[%s] EXECUTING: %s", _timestamp(), full_command)

        try:
            process = subprocess.Popen(
                full_command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as exc:
            result = ExecutionResult(
                success=False,
                error=f"Command could not be started: {exc}",
            )
        else:
            result = self._wait(process, full_command)

        if result.success:
            logger.info(
                "[%s] COMMAND SUCCESS: %s (output %d chars)",
                _timestamp(),
                full_command,
                len(result.output),
            )
        else:
            logger.warning("[%s] COMMAND FAILED: %s", _timestamp(), result.error)
        return result

    def _wait(self, process: subprocess.Popen[str], full_command: str) -> ExecutionResult:
        with process:
            try:
                output, _ = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                _kill_group(process)
                output, _ = process.communicate()
                return ExecutionResult(
                    success=False,
                    output=output or "",
                    error=f"Command timed out after {self.timeout:g}s: {full_command}",
                )

        output = output or ""
        if process.returncode == 0:
            return ExecutionResult(success=True, output=output, returncode=0)
        return ExecutionResult(
            success=False,
            output=output,
            error=f"Command failed with exit code {process.returncode}: {full_command}",
            returncode=process.returncode,
        )

    # ------------------------------------------------------------------
    # Follow-up diagnostic
    # ------------------------------------------------------------------

    def schedule_follow_up(self, job_name: str) -> bool:
        """Queue the follow-up command after the configured delay.

        Returns False when no follow-up is configured. The follow-up's
        result is only logged; it never feeds back into job state.
        """
        if not self.follow_up_command or self._scheduler is None:
            return False
        self._scheduler.run_later(
            self._run_follow_up, self.follow_up_delay, job_name=job_name
        )
        return True

    def _run_follow_up(self, job_name: str) -> None:
        logger.info(
            "Running follow-up '%s' %gs after job '%s'",
            self.follow_up_command,
            self.follow_up_delay,
            job_name,
        )
        try:
            result = self.run(self.follow_up_command)
        except Exception:
            logger.exception("Follow-up for job '%s' crashed", job_name)
            return
        logger.info(
            "Follow-up for job '%s': %s\nOutput: %s%s",
            job_name,
            "SUCCESS" if result.success else "FAILED",
            result.output,
            f"\nError: {result.error}" if result.error else "",
        )
