"""Request bodies for the HTTP API.

Every field is optional so missing fields are reported with the API's own
400 payloads rather than FastAPI's generic 422.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class JobCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    schedule: str | None = None
    command: str | None = None
    enabled: bool = True


class JobUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    schedule: str | None = None
    command: str | None = None
    enabled: bool | None = None


class ScheduleCheck(BaseModel):
    schedule: str | None = None
