"""Job record, status enum and execution result."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Execution state of a job.

    ``inactive -> active`` when a run starts, ``active -> inactive`` on
    success, ``active -> error`` on failure, ``error -> active`` on the
    next run. ``disable`` returns any state to ``inactive``.
    """

    INACTIVE = "inactive"
    ACTIVE = "active"
    ERROR = "error"


def generate_job_id() -> str:
    """Return a fresh opaque job id."""
    return uuid.uuid4().hex[:12]


@dataclass
class Job:
    """A scheduled unit of work bound to one external command."""

    id: str
    name: str
    schedule: str
    command: str
    enabled: bool = True
    status: JobStatus = JobStatus.INACTIVE
    last_run: datetime | None = None
    next_run: datetime | None = None
    error_message: str | None = None

    @classmethod
    def new(
        cls,
        name: str,
        schedule: str,
        command: str,
        enabled: bool = True,
    ) -> Job:
        """Build an unregistered job with a freshly generated id."""
        return cls(
            id=generate_job_id(),
            name=name,
            schedule=schedule,
            command=command,
            enabled=enabled,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation using the API's camelCase keys."""
        return {
            "id": self.id,
            "name": self.name,
            "schedule": self.schedule,
            "command": self.command,
            "enabled": self.enabled,
            "status": self.status.value,
            "lastRun": _iso(self.last_run),
            "nextRun": _iso(self.next_run),
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one command."""

    success: bool
    output: str = ""
    error: str | None = None
    returncode: int | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
