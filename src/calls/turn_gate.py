"""Per-call turn-taking state machine.

Phases::

    IDLE -> DEBOUNCE      transcript arrived, nothing in flight
    DEBOUNCE -> IN_FLIGHT debounce elapsed, one response requested
    IN_FLIGHT -> SPEAKING response text handed to synthesis
    SPEAKING -> IDLE      playback drained and suppression window elapsed

The in-flight flag is separate from the phase: it clears only when the
dialogue collaborator acknowledges the end of the response, so a new request
can never overlap an old one even while the previous answer is still
playing.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Protocol

from calls.events import (
    Announce,
    CallerSpeechStarted,
    CallerSpeechStopped,
    GateEvent,
    PlaybackFinished,
    ResponseFinished,
    ResponseText,
    SynthesisFailed,
    TimerFired,
    TranscriptArrived,
    UpstreamFailed,
    Utterance,
    UtteranceKind,
)
from calls.timers import TimerGroup
from config.settings import Settings

LOGGER = logging.getLogger(__name__)

DEBOUNCE = "debounce"
NO_INPUT = "no_input"
SUPPRESSION = "suppression"
RESPONSE_TIMEOUT = "response_timeout"

_FAILED_RESPONSE_STATUSES = {"failed", "incomplete"}


class TurnPhase(str, Enum):
    IDLE = "idle"
    DEBOUNCE = "debounce"
    IN_FLIGHT = "in_flight"
    SPEAKING = "speaking"


class TurnActions(Protocol):
    """Side effects the gate asks its owning session to perform."""

    @property
    def has_secondary_dialogue(self) -> bool: ...

    async def request_response(self) -> None: ...

    async def cancel_response(self) -> None: ...

    async def secondary_response(self) -> str | None: ...

    def speak(self, utterance: Utterance) -> None: ...


@dataclass(frozen=True, slots=True)
class TurnGateConfig:
    debounce: float = 0.35
    no_input_delay: float = 2.5
    fallback_min_gap: float = 1.5
    fallback_cooldown: float = 8.0
    suppression_window: float = 0.6
    response_timeout: float = 15.0
    fallback_text: str = "Sorry, I didn't catch that. Could you say it again?"
    apology_text: str = "I'm sorry, I'm having a technical problem. Please try again in a moment."

    @classmethod
    def from_settings(
        cls, settings: Settings, *, fallback_text: str | None = None, apology_text: str | None = None
    ) -> TurnGateConfig:
        return cls(
            debounce=settings.turn_debounce_ms / 1000.0,
            no_input_delay=settings.no_input_fallback_ms / 1000.0,
            fallback_min_gap=settings.fallback_min_gap_ms / 1000.0,
            fallback_cooldown=settings.fallback_cooldown_ms / 1000.0,
            suppression_window=settings.barge_in_suppression_ms / 1000.0,
            response_timeout=settings.response_timeout_ms / 1000.0,
            fallback_text=fallback_text or settings.fallback_text,
            apology_text=apology_text or settings.apology_text,
        )


@dataclass(slots=True)
class TurnGateState:
    timers: TimerGroup = field(default_factory=TimerGroup)
    in_flight: bool = False
    response_has_text: bool = False
    cancelled: bool = False
    speaking: bool = False
    pending_utterances: int = 0
    last_fallback_at: float | None = None
    last_transcript_at: float | None = None
    speech_stopped_at: float | None = None
    awaiting_transcript: bool = True
    requests_issued: int = 0
    requests_skipped: int = 0


class TurnGate:
    def __init__(
        self,
        actions: TurnActions,
        post: Callable[[GateEvent], None],
        config: TurnGateConfig,
        *,
        call_id: str = "-",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._actions = actions
        self._post = post
        self._config = config
        self._call_id = call_id
        self._clock = clock
        self._utterance_ids = itertools.count(1)
        self._substituting = False
        self.state = TurnGateState()
        for name in (DEBOUNCE, NO_INPUT, SUPPRESSION, RESPONSE_TIMEOUT):
            self.state.timers.create(name, partial(self._timer_elapsed, name))

        self._handlers = {
            TranscriptArrived: self._on_transcript,
            CallerSpeechStarted: self._on_speech_started,
            CallerSpeechStopped: self._on_speech_stopped,
            ResponseText: self._on_response_text,
            ResponseFinished: self._on_response_finished,
            UpstreamFailed: self._on_upstream_failed,
            Announce: self._on_announce,
            PlaybackFinished: self._on_playback_finished,
            SynthesisFailed: self._on_synthesis_failed,
            TimerFired: self._on_timer,
        }
        self._timer_handlers = {
            DEBOUNCE: self._on_debounce_elapsed,
            NO_INPUT: self._on_no_input_elapsed,
            SUPPRESSION: self._on_suppression_elapsed,
            RESPONSE_TIMEOUT: self._on_response_timeout,
        }

    @property
    def phase(self) -> TurnPhase:
        if self.state.speaking:
            return TurnPhase.SPEAKING
        if self.state.in_flight:
            return TurnPhase.IN_FLIGHT
        if self.state.timers[DEBOUNCE].armed:
            return TurnPhase.DEBOUNCE
        return TurnPhase.IDLE

    @property
    def suppress_inbound(self) -> bool:
        """True while bot audio plays or within the trailing suppression window."""

        return self.state.speaking

    def timer(self, name: str):
        return self.state.timers[name]

    async def handle(self, event: GateEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            LOGGER.debug("[%s] gate ignoring %s", self._call_id, type(event).__name__)
            return
        await handler(event)

    def close(self) -> None:
        self.state.timers.cancel_all()

    def fallback_blockers(self, now: float | None = None) -> list[str]:
        """Reasons the no-input fallback must not be spoken right now."""

        now = self._clock() if now is None else now
        state = self.state
        blockers: list[str] = []
        if state.last_transcript_at is not None and now - state.last_transcript_at < self._config.fallback_min_gap:
            blockers.append("recent_transcript")
        if state.in_flight:
            blockers.append("response_in_flight")
        if state.speaking or state.pending_utterances:
            blockers.append("speaking")
        if state.last_fallback_at is not None and now - state.last_fallback_at < self._config.fallback_cooldown:
            blockers.append("cooldown")
        return blockers

    def _timer_elapsed(self, name: str, generation: int) -> None:
        self._post(TimerFired(name, generation))

    async def _on_timer(self, event: TimerFired) -> None:
        if not self.state.timers[event.name].is_current(event.generation):
            LOGGER.debug("[%s] stale %s timer ignored", self._call_id, event.name)
            return
        await self._timer_handlers[event.name]()

    async def _on_transcript(self, event: TranscriptArrived) -> None:
        state = self.state
        state.last_transcript_at = self._clock()
        state.awaiting_transcript = False
        state.timers[NO_INPUT].cancel()
        if state.in_flight:
            LOGGER.debug("[%s] transcript during in-flight response, not re-arming", self._call_id)
            return
        state.timers[DEBOUNCE].arm(self._config.debounce)

    async def _on_debounce_elapsed(self) -> None:
        state = self.state
        if state.in_flight:
            state.requests_skipped += 1
            LOGGER.info("[%s] response request skipped: one already in flight", self._call_id)
            return
        state.in_flight = True
        state.response_has_text = False
        state.cancelled = False
        state.requests_issued += 1
        state.timers[RESPONSE_TIMEOUT].arm(self._config.response_timeout)
        try:
            await self._actions.request_response()
        except Exception as exc:
            LOGGER.warning("[%s] response request failed: %s", self._call_id, exc)
            state.in_flight = False
            state.timers[RESPONSE_TIMEOUT].cancel()
            await self._recover(str(exc))

    async def _on_response_text(self, event: ResponseText) -> None:
        if not event.text.strip():
            return
        if self.state.cancelled:
            LOGGER.info("[%s] dropping text of cancelled response %s", self._call_id, event.response_id)
            return
        self.state.response_has_text = True
        self.state.timers[RESPONSE_TIMEOUT].cancel()
        self._speak(event.text, "response")

    async def _on_response_finished(self, event: ResponseFinished) -> None:
        state = self.state
        had_text = state.response_has_text
        was_cancelled = state.cancelled
        state.in_flight = False
        state.cancelled = False
        state.timers[RESPONSE_TIMEOUT].cancel()
        if was_cancelled:
            LOGGER.info("[%s] cancelled response %s finished (%s)", self._call_id, event.response_id, event.status)
            return
        if event.status in _FAILED_RESPONSE_STATUSES and not had_text:
            await self._recover(f"response {event.response_id} {event.status}")

    async def _on_response_timeout(self) -> None:
        state = self.state
        if not state.in_flight:
            return
        if state.cancelled:
            # Upstream never acknowledged the cancel; stop waiting for it.
            LOGGER.warning("[%s] cancelled response never finished, releasing the turn", self._call_id)
            state.in_flight = False
            state.cancelled = False
            return
        if state.response_has_text:
            return
        LOGGER.warning("[%s] no response after %.1fs, cancelling", self._call_id, self._config.response_timeout)
        state.cancelled = True
        try:
            await self._actions.cancel_response()
        except Exception as exc:
            LOGGER.warning("[%s] response cancel failed: %s", self._call_id, exc)
        # In flight until upstream reports the cancelled response as done.
        state.timers[RESPONSE_TIMEOUT].arm(self._config.response_timeout)
        await self._recover("response timed out")

    async def _on_upstream_failed(self, event: UpstreamFailed) -> None:
        if not event.fatal:
            LOGGER.warning("[%s] upstream reported error: %s", self._call_id, event.detail)
            return
        LOGGER.error("[%s] dialogue session lost: %s", self._call_id, event.detail)
        state = self.state
        was_waiting = state.in_flight and not state.response_has_text
        state.in_flight = False
        state.cancelled = False
        state.timers[RESPONSE_TIMEOUT].cancel()
        if was_waiting:
            await self._recover(event.detail)

    async def _recover(self, detail: str) -> None:
        """Answer through the secondary provider once, else apologise."""

        if self._actions.has_secondary_dialogue and not self._substituting:
            self._substituting = True
            try:
                text = await self._actions.secondary_response()
            except Exception as exc:
                LOGGER.warning("[%s] secondary dialogue failed: %s", self._call_id, exc)
                text = None
            finally:
                self._substituting = False
            if text and text.strip():
                LOGGER.info("[%s] answered via secondary dialogue after: %s", self._call_id, detail)
                self._speak(text, "response")
                return
        self._speak(self._config.apology_text, "apology")

    async def _on_speech_started(self, event: CallerSpeechStarted) -> None:
        self.state.awaiting_transcript = True
        self.state.timers[NO_INPUT].cancel()

    async def _on_speech_stopped(self, event: CallerSpeechStopped) -> None:
        self.state.speech_stopped_at = self._clock()
        if not self.state.awaiting_transcript:
            LOGGER.debug("[%s] speech stopped after its transcript, no fallback armed", self._call_id)
            return
        self.state.timers[NO_INPUT].arm(self._config.no_input_delay)

    async def _on_no_input_elapsed(self) -> None:
        now = self._clock()
        blockers = self.fallback_blockers(now)
        if blockers:
            LOGGER.info("[%s] no-input fallback suppressed: %s", self._call_id, ", ".join(blockers))
            return
        self.state.last_fallback_at = now
        self._speak(self._config.fallback_text, "no_input")

    async def _on_announce(self, event: Announce) -> None:
        self._speak(event.text, event.kind)

    def _speak(self, text: str, kind: UtteranceKind) -> None:
        if not text.strip():
            return
        state = self.state
        state.speaking = True
        state.pending_utterances += 1
        state.timers[SUPPRESSION].cancel()
        self._actions.speak(Utterance(id=next(self._utterance_ids), text=text, kind=kind))

    def _utterance_done(self) -> None:
        state = self.state
        state.pending_utterances = max(0, state.pending_utterances - 1)
        if state.pending_utterances == 0:
            state.timers[SUPPRESSION].arm(self._config.suppression_window)

    async def _on_playback_finished(self, event: PlaybackFinished) -> None:
        self._utterance_done()

    async def _on_synthesis_failed(self, event: SynthesisFailed) -> None:
        LOGGER.error("[%s] could not speak %s utterance: %s", self._call_id, event.utterance.kind, event.detail)
        if event.utterance.kind != "apology":
            self._speak(self._config.apology_text, "apology")
        self._utterance_done()

    async def _on_suppression_elapsed(self) -> None:
        if self.state.pending_utterances == 0:
            self.state.speaking = False
