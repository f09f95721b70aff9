"""Once-per-call lead classification and notification delivery."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar
from zoneinfo import ZoneInfo

from calls.extraction import subject_is_informative
from calls.schemas import (
    CallState,
    DecisionReason,
    LeadRecord,
    NotificationEvent,
    NotificationKind,
    RecordingInfo,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationSink(Protocol):
    async def deliver(self, event: NotificationEvent) -> bool: ...


class RecordingResolver(Protocol):
    async def resolve(self, call_sid: str) -> RecordingInfo | None: ...


class CallSummarizer(Protocol):
    async def summarize(self, call: CallState) -> str | None: ...


class CallRecordStore(Protocol):
    async def save(self, call: CallState, lead: LeadRecord, outcome: FinalizationOutcome) -> None: ...


@dataclass(frozen=True, slots=True)
class LeadDecision:
    kind: NotificationKind
    reason: DecisionReason

    @property
    def is_final(self) -> bool:
        return self.kind is NotificationKind.FINAL


def callback_number(call: CallState, lead: LeadRecord) -> str | None:
    if lead.callback_to_number:
        return lead.callback_to_number
    if not call.caller_withheld:
        return call.caller_e164
    return None


def evaluate_lead(call: CallState, lead: LeadRecord, *, subject_min_words: int) -> LeadDecision:
    """FINAL iff name, informative subject and a callback number are all present."""

    if not (lead.full_name or "").strip():
        return LeadDecision(NotificationKind.ABANDONED, DecisionReason.MISSING_NAME)
    if not subject_is_informative(lead.subject or "", subject_min_words):
        return LeadDecision(NotificationKind.ABANDONED, DecisionReason.MISSING_SUBJECT)
    if not callback_number(call, lead):
        return LeadDecision(NotificationKind.ABANDONED, DecisionReason.MISSING_CALLBACK_NUMBER)
    return LeadDecision(NotificationKind.FINAL, DecisionReason.COMPLETE)


@dataclass(frozen=True, slots=True)
class FinalizationPolicy:
    subject_min_words: int = 3
    call_log_enabled: bool = True
    time_zone: str = "UTC"


@dataclass(slots=True)
class FinalizationOutcome:
    decision: LeadDecision
    finalize_reason: str
    duration_sec: int | None = None
    recording: RecordingInfo | None = None
    events: list[NotificationEvent] = field(default_factory=list)
    delivered: dict[NotificationKind, bool] = field(default_factory=dict)


def build_payload(
    kind: NotificationKind,
    call: CallState,
    lead: LeadRecord,
    *,
    decision: LeadDecision,
    finalize_reason: str,
    duration_sec: int | None,
    recording: RecordingInfo | None,
    time_zone: str,
) -> dict[str, Any]:
    local_start = call.started_at.astimezone(ZoneInfo(time_zone))
    return {
        "event": kind.value,
        "call_sid": call.call_sid,
        "stream_sid": call.stream_sid,
        "correlation_id": call.correlation_id,
        "full_name": lead.full_name,
        "subject": lead.subject,
        "caller_id_raw": call.caller_raw or None,
        "caller_id_e164": call.caller_e164,
        "caller_withheld": call.caller_withheld,
        "callback_to_number": callback_number(call, lead),
        "decision": decision.kind.value,
        "decision_reason": decision.reason.value,
        "finalize_reason": finalize_reason,
        "started_at": call.started_at.isoformat(),
        "ended_at": call.ended_at.isoformat() if call.ended_at else None,
        "duration_sec": duration_sec,
        "call_date": local_start.strftime("%Y-%m-%d"),
        "call_time": local_start.strftime("%H:%M:%S"),
        "recording_provider": recording.provider if recording else None,
        "recording_sid": recording.sid if recording else None,
        "recording_url_public": recording.url_public if recording else None,
        "transcript": call.transcript_text(),
        "parsing_summary": lead.parsing_summary,
    }


class FinalizationGate:
    """Runs the end-of-call pipeline at most once per :class:`CallState`.

    Every step is isolated: an exception is logged and the remaining steps
    still run with a neutral value in place of the failed one.
    """

    def __init__(
        self,
        *,
        sink: NotificationSink,
        policy: FinalizationPolicy,
        recordings: RecordingResolver | None = None,
        summarizer: CallSummarizer | None = None,
        store: CallRecordStore | None = None,
    ) -> None:
        self._sink = sink
        self._policy = policy
        self._recordings = recordings
        self._summarizer = summarizer
        self._store = store

    async def finalize(
        self, call: CallState, lead: LeadRecord, reason: str
    ) -> FinalizationOutcome | None:
        if call.finalized:
            LOGGER.debug("[%s] finalize(%s) ignored, already finalized", call.correlation_id, reason)
            return None
        call.finalized = True
        if call.ended_at is None:
            call.ended_at = utcnow()
        LOGGER.info("[%s] finalizing call %s (reason=%s)", call.correlation_id, call.call_sid, reason)

        duration = await self._step(call, "duration", self._duration, None)
        recording = await self._step(call, "recording", self._resolve_recording, None)
        summary = await self._step(call, "summary", self._summarize, None)
        if summary:
            lead.parsing_summary = summary

        fallback = LeadDecision(NotificationKind.ABANDONED, DecisionReason.MISSING_NAME)

        async def _decide(current: CallState) -> LeadDecision:
            return evaluate_lead(current, lead, subject_min_words=self._policy.subject_min_words)

        decision = await self._step(call, "decision", _decide, fallback)
        lead.decision_reason = decision.reason
        outcome = FinalizationOutcome(
            decision=decision,
            finalize_reason=reason,
            duration_sec=duration,
            recording=recording,
        )

        kinds = [decision.kind]
        if self._policy.call_log_enabled:
            kinds.insert(0, NotificationKind.CALL_LOG)
        for kind in kinds:
            event = await self._step(call, f"payload:{kind.value}", self._event_builder(kind, lead, outcome), None)
            if event is None:
                continue
            outcome.events.append(event)
            outcome.delivered[kind] = bool(await self._step(call, f"deliver:{kind.value}", self._deliverer(event), False))

        if self._store is not None:
            store = self._store

            async def _save(current: CallState) -> None:
                await store.save(current, lead, outcome)

            await self._step(call, "persist", _save, None)

        LOGGER.info(
            "[%s] call %s finalized: %s (%s), duration=%ss",
            call.correlation_id,
            call.call_sid,
            decision.kind.value,
            decision.reason.value,
            duration,
        )
        return outcome

    async def _step(
        self,
        call: CallState,
        name: str,
        func: Callable[[CallState], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            return await func(call)
        except Exception as exc:
            LOGGER.exception("[%s] finalization step %s failed: %s", call.correlation_id, name, exc)
            return default

    async def _duration(self, call: CallState) -> int | None:
        if call.ended_at is None:
            return None
        return max(0, round((call.ended_at - call.started_at).total_seconds()))

    async def _resolve_recording(self, call: CallState) -> RecordingInfo | None:
        if self._recordings is None or not call.call_sid:
            return None
        return await self._recordings.resolve(call.call_sid)

    async def _summarize(self, call: CallState) -> str | None:
        if self._summarizer is None or not call.transcript:
            return None
        return await self._summarizer.summarize(call)

    def _event_builder(
        self, kind: NotificationKind, lead: LeadRecord, outcome: FinalizationOutcome
    ) -> Callable[[CallState], Awaitable[NotificationEvent]]:
        async def _build(call: CallState) -> NotificationEvent:
            payload = build_payload(
                kind,
                call,
                lead,
                decision=outcome.decision,
                finalize_reason=outcome.finalize_reason,
                duration_sec=outcome.duration_sec,
                recording=outcome.recording,
                time_zone=self._policy.time_zone,
            )
            return NotificationEvent(kind=kind, call_sid=call.call_sid, payload=payload)

        return _build

    def _deliverer(self, event: NotificationEvent) -> Callable[[CallState], Awaitable[bool]]:
        async def _deliver(call: CallState) -> bool:
            return await self._sink.deliver(event)

        return _deliver
