"""Call, lead and notification data structures."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["caller", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    role: Role
    text: str
    at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class CallState:
    """Per-call state owned by exactly one CallSession."""

    correlation_id: str = field(default_factory=new_correlation_id)
    stream_sid: str | None = None
    call_sid: str | None = None
    caller_raw: str = ""
    caller_e164: str | None = None
    caller_withheld: bool = True
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    transcript: list[TranscriptEntry] = field(default_factory=list)
    finalized: bool = False

    def append(self, role: Role, text: str) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, text=text)
        self.transcript.append(entry)
        return entry

    def transcript_text(self) -> str:
        return "\n".join(f"{entry.role.upper()}: {entry.text}" for entry in self.transcript)


class DecisionReason(str, Enum):
    COMPLETE = "complete"
    MISSING_NAME = "missing_name"
    MISSING_SUBJECT = "missing_subject"
    MISSING_CALLBACK_NUMBER = "missing_callback_number"


@dataclass(slots=True)
class LeadRecord:
    full_name: str | None = None
    subject: str | None = None
    callback_to_number: str | None = None
    decision_reason: DecisionReason | None = None
    parsing_summary: str | None = None


class NotificationKind(str, Enum):
    CALL_LOG = "CALL_LOG"
    FINAL = "FINAL"
    ABANDONED = "ABANDONED"


class NotificationEvent(BaseModel):
    """Snapshot handed to the notification sink."""

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    call_sid: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RecordingInfo:
    provider: str
    sid: str
    url: str | None = None
    url_public: str | None = None
