"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    dialogue_provider: str
    time: datetime


class ReloadResponse(BaseModel):
    ok: bool = True
    version: int
    elapsed_ms: int
    settings_keys: list[str]
    prompts_keys: list[str]


class CallRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_sid: str
    correlation_id: str
    stream_sid: str | None = None
    caller_id_e164: str | None = None
    caller_withheld: bool
    started_at: datetime
    ended_at: datetime | None = None
    duration_sec: int | None = None
    decision: str
    decision_reason: str
    finalize_reason: str
    full_name: str | None = None
    subject: str | None = None
    callback_to_number: str | None = None
    recording_sid: str | None = None
    recording_url_public: str | None = None
    transcript: str = Field(description="Transcript as ROLE: text lines.")
    delivered: dict[str, bool] = Field(default_factory=dict)
