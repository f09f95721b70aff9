"""SQLAlchemy model for finalized calls."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class CallRecord(Base):
    """One row per finalized call, written after notifications went out."""

    __tablename__ = "call_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_sid: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    correlation_id: Mapped[str] = mapped_column(String(32), index=True)
    stream_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    caller_id_raw: Mapped[str] = mapped_column(String(64), default="")
    caller_id_e164: Mapped[str | None] = mapped_column(String(32), nullable=True)
    caller_withheld: Mapped[bool] = mapped_column(Boolean, default=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    decision: Mapped[str] = mapped_column(String(16))
    decision_reason: Mapped[str] = mapped_column(String(32))
    finalize_reason: Mapped[str] = mapped_column(String(32))
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subject: Mapped[str | None] = mapped_column(Text(), nullable=True)
    callback_to_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    recording_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recording_url_public: Mapped[str | None] = mapped_column(Text(), nullable=True)
    transcript: Mapped[str] = mapped_column(Text(), default="")
    delivered: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
