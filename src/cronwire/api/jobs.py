"""Job management endpoints under ``/api/cron``.

Handlers are plain ``def`` so FastAPI runs them on its threadpool; the
registry is thread-safe and ``execute`` blocks for the command's runtime.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from cronwire.api.schemas import JobCreate, JobUpdate, ScheduleCheck
from cronwire.config.defaults import SCHEDULE_EXAMPLE
from cronwire.jobs.registry import JobRegistry
from cronwire.scheduler.cron import next_run, validate

router = APIRouter(prefix="/api/cron", tags=["cron"])

_REQUIRED_FIELDS = ["name", "schedule", "command"]


def _registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def _job_response(registry: JobRegistry, job_id: str):
    job = registry.get(job_id)
    if job is None:
        return _not_found()
    return {"success": True, "job": job.to_dict()}


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Cron job not found"})


def _invalid_schedule() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid cron schedule format", "example": SCHEDULE_EXAMPLE},
    )


@router.get("")
def list_jobs(request: Request):
    return {"jobs": [job.to_dict() for job in _registry(request).list()]}


@router.post("/validate-schedule")
def validate_schedule(body: ScheduleCheck, request: Request):
    if not body.schedule:
        return JSONResponse(status_code=400, content={"error": "Schedule is required"})

    valid = validate(body.schedule)
    response = {"valid": valid, "schedule": body.schedule, "example": SCHEDULE_EXAMPLE}
    if valid:
        upcoming = next_run(body.schedule, timezone=_registry(request).timezone)
        response["nextRun"] = upcoming.isoformat() if upcoming else None
    return response


@router.get("/{job_id}")
def get_job(job_id: str, request: Request):
    job = _registry(request).get(job_id)
    if job is None:
        return _not_found()
    return {"job": job.to_dict()}


@router.post("", status_code=201)
def create_job(body: JobCreate, request: Request):
    if not (body.name and body.schedule and body.command):
        return JSONResponse(
            status_code=400,
            content={"error": "Missing required fields", "required": _REQUIRED_FIELDS},
        )
    if not validate(body.schedule):
        return _invalid_schedule()

    job = _registry(request).add(
        name=body.name,
        schedule=body.schedule,
        command=body.command,
        enabled=body.enabled,
    )
    if job is None:
        return JSONResponse(status_code=500, content={"error": "Failed to create cron job"})
    return {"success": True, "job": job.to_dict()}


@router.put("/{job_id}")
def update_job(job_id: str, body: JobUpdate, request: Request):
    registry = _registry(request)
    if job_id not in registry:
        return _not_found()

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "schedule" in changes and not validate(changes["schedule"]):
        return _invalid_schedule()
    if not registry.update(job_id, changes):
        if job_id not in registry:
            return _not_found()
        return JSONResponse(status_code=400, content={"error": "Invalid cron job update"})
    return _job_response(registry, job_id)


@router.delete("/{job_id}")
def delete_job(job_id: str, request: Request):
    if not _registry(request).delete(job_id):
        return _not_found()
    return {"success": True, "message": "Cron job deleted"}


@router.post("/{job_id}/enable")
def enable_job(job_id: str, request: Request):
    registry = _registry(request)
    if not registry.enable(job_id):
        return _not_found()
    return _job_response(registry, job_id)


@router.post("/{job_id}/disable")
def disable_job(job_id: str, request: Request):
    registry = _registry(request)
    if not registry.disable(job_id):
        return _not_found()
    return _job_response(registry, job_id)


@router.post("/{job_id}/execute")
def execute_job(job_id: str, request: Request):
    registry = _registry(request)
    if job_id not in registry:
        return _not_found()

    result = registry.execute_now(job_id)
    return {
        "success": result.success,
        "output": result.output,
        "error": result.error,
        "executedAt": datetime.now(timezone.utc).isoformat(),
    }
