"""Jobs — registry, execution runner and job models."""

from cronwire.jobs.executor import CommandRunner
from cronwire.jobs.models import ExecutionResult, Job, JobStatus
from cronwire.jobs.registry import JobRegistry

__all__ = ["CommandRunner", "ExecutionResult", "Job", "JobRegistry", "JobStatus"]
