"""Live telemetry endpoints under ``/api/metrics``."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request

from cronwire.telemetry.base import TelemetryStore, live_key

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def _store(request: Request) -> TelemetryStore:
    return request.app.state.store


@router.get("")
async def get_all_metrics(request: Request):
    return {"data": await _store(request).get_all_live_data()}


@router.get("/{key}")
async def get_metric(key: str, request: Request):
    return {"key": key, "data": await _store(request).get_live_data(live_key(key))}


@router.post("/{key}")
async def set_metric(key: str, request: Request, data: dict[str, Any] = Body(...)):
    await _store(request).set_live_data(live_key(key), data)
    return {"success": True, "key": key, "data": data}
