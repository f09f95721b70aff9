"""Repository persisting finalized calls."""

from __future__ import annotations

from sqlalchemy import select

from calls.finalization import FinalizationOutcome, callback_number
from calls.schemas import CallState, LeadRecord
from db.base import AsyncSessionFactory
from db.models import CallRecord


class CallRecordRepository:
    """Async repository for :class:`CallRecord` rows."""

    async def save(self, call: CallState, lead: LeadRecord, outcome: FinalizationOutcome) -> CallRecord:
        call_sid = call.call_sid or call.correlation_id
        async with AsyncSessionFactory() as session:
            result = await session.execute(select(CallRecord).where(CallRecord.call_sid == call_sid))
            record = result.scalar_one_or_none()
            if record is None:
                record = CallRecord(call_sid=call_sid)
                session.add(record)

            record.correlation_id = call.correlation_id
            record.stream_sid = call.stream_sid
            record.caller_id_raw = call.caller_raw
            record.caller_id_e164 = call.caller_e164
            record.caller_withheld = call.caller_withheld
            record.started_at = call.started_at
            record.ended_at = call.ended_at
            record.duration_sec = outcome.duration_sec
            record.decision = outcome.decision.kind.value
            record.decision_reason = outcome.decision.reason.value
            record.finalize_reason = outcome.finalize_reason
            record.full_name = lead.full_name
            record.subject = lead.subject
            record.callback_to_number = callback_number(call, lead)
            if outcome.recording is not None:
                record.recording_sid = outcome.recording.sid
                record.recording_url_public = outcome.recording.url_public
            record.transcript = call.transcript_text()
            record.delivered = {kind.value: ok for kind, ok in outcome.delivered.items()}

            await session.commit()
            await session.refresh(record)
            return record

    async def get(self, call_sid: str) -> CallRecord | None:
        async with AsyncSessionFactory() as session:
            result = await session.execute(select(CallRecord).where(CallRecord.call_sid == call_sid))
            return result.scalar_one_or_none()
