"""Lifecycle of one bridged call.

A session runs three tasks besides the transport loop that drives it:

* the gate task, sole consumer of the inbox and owner of turn-taking state;
* the upstream receiver, translating dialogue events into inbox messages;
* the playback worker, synthesizing utterances one at a time into the pacer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from calls.errors import MalformedMessage, TransportUnavailable, UpstreamError
from calls.events import (
    Announce,
    CallerSpeechStarted,
    CallerSpeechStopped,
    GateEvent,
    PlaybackFinished,
    ResponseFinished,
    ResponseText,
    Shutdown,
    SynthesisFailed,
    TranscriptArrived,
    UpstreamFailed,
    Utterance,
)
from calls.extraction import LeadExtractor, normalize_caller_id
from calls.finalization import FinalizationGate, FinalizationOutcome
from calls.history import build_llm_history
from calls.schemas import CallState, LeadRecord, utcnow
from calls.timers import TimerGroup
from calls.turn_gate import TurnGate, TurnGateConfig
from config.context import RuntimeContext
from config.settings import Settings
from dialogue import events as upstream
from dialogue.realtime import DialogueFactory, DialogueSession
from integrations.twilio_client import TwilioCallControl
from llm.base import BaseLLMClient
from speech.greeting import GreetingCache
from speech.tts import BaseSynthesizer
from telephony.media_streams import MediaMessage, StartMessage, StopMessage, media_message, parse_transport_message
from telephony.pacer import AudioFramePacer
from telephony.transport import Transport

LOGGER = logging.getLogger(__name__)

IDLE_TIMEOUT = "idle_timeout"
MAX_DURATION = "max_duration"


@dataclass
class CallServices:
    """Process-wide collaborators shared by every call session."""

    settings: Settings
    finalizer: FinalizationGate
    dialogue_factory: DialogueFactory | None = None
    synthesizer: BaseSynthesizer | None = None
    secondary_synthesizer: BaseSynthesizer | None = None
    secondary_llm: BaseLLMClient | None = None
    call_control: TwilioCallControl | None = None
    greeting_cache: GreetingCache | None = None


class CallSession:
    def __init__(self, transport: Transport, context: RuntimeContext, services: CallServices) -> None:
        self._transport = transport
        self._context = context
        self._services = services
        settings = services.settings

        self.call = CallState()
        self._cid = self.call.correlation_id
        self._inbox: asyncio.Queue[GateEvent] = asyncio.Queue()
        self._speech: asyncio.Queue[Utterance] = asyncio.Queue()
        self.gate = TurnGate(
            self,
            self._inbox.put_nowait,
            TurnGateConfig.from_settings(
                settings,
                fallback_text=context.fallback_text,
                apology_text=context.apology_text,
            ),
            call_id=self._cid,
        )
        self.pacer = AudioFramePacer(
            self._send_frame,
            is_open=lambda: transport.is_open,
            frame_ms=settings.pacer_frame_ms,
            call_id=self._cid,
        )
        self.extractor = LeadExtractor(
            subject_min_words=settings.subject_min_words,
            country_code=settings.default_country_code,
        )
        self._timers = TimerGroup()
        self._timers.create(IDLE_TIMEOUT, lambda _generation: self.request_stop(IDLE_TIMEOUT))
        self._timers.create(MAX_DURATION, lambda _generation: self.request_stop(MAX_DURATION))

        self._dialogue: DialogueSession | None = None
        self._dialogue_ready = False
        self._greeting_text = ""
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._stop_reason: str | None = None
        self._terminated = False
        self._audio_error_logged = False

        self.started = False
        self.inbound_frames = 0
        self.suppressed_frames = 0
        self.outcome: FinalizationOutcome | None = None

    @property
    def correlation_id(self) -> str:
        return self._cid

    @property
    def lead(self) -> LeadRecord:
        return self.extractor.lead

    # -- transport loop -------------------------------------------------

    async def run(self) -> FinalizationOutcome | None:
        self._spawn(self._gate_loop(), "gate")
        reason = "transport_closed"
        stop_waiter = asyncio.create_task(self._stop_event.wait())
        try:
            while True:
                receive = asyncio.create_task(self._transport.receive_text())
                done, _ = await asyncio.wait({receive, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if receive not in done:
                    receive.cancel()
                    reason = self._stop_reason or reason
                    break
                try:
                    raw = receive.result()
                except TransportUnavailable:
                    reason = self._stop_reason or "transport_closed"
                    break
                except Exception as exc:
                    LOGGER.exception("[%s] transport receive failed: %s", self._cid, exc)
                    reason = "transport_error"
                    break

                try:
                    message = parse_transport_message(raw)
                except MalformedMessage as exc:
                    LOGGER.debug("[%s] dropping inbound message: %s", self._cid, exc.detail)
                    continue
                if isinstance(message, StopMessage):
                    reason = "transport_stop"
                    break
                if isinstance(message, StartMessage):
                    await self._on_start(message)
                elif isinstance(message, MediaMessage):
                    await self._on_media(message)
        finally:
            stop_waiter.cancel()
            await self.terminate(reason)
        return self.outcome

    def request_stop(self, reason: str) -> None:
        if self._stop_reason is None:
            self._stop_reason = reason
            LOGGER.info("[%s] stopping call: %s", self._cid, reason)
        self._stop_event.set()

    async def _on_start(self, message: StartMessage) -> None:
        if self.started:
            LOGGER.warning("[%s] duplicate start for stream %s ignored", self._cid, message.stream_sid)
            return
        self.started = True
        settings = self._services.settings
        call = self.call
        call.stream_sid = message.stream_sid
        call.call_sid = message.start.call_sid or None
        call.started_at = utcnow()
        call.caller_raw = message.caller
        call.caller_e164, call.caller_withheld = normalize_caller_id(message.caller, settings.default_country_code)
        self.extractor.caller_withheld = call.caller_withheld
        if not call.caller_withheld:
            self.lead.callback_to_number = call.caller_e164

        LOGGER.info(
            "[%s] stream %s started for call %s (caller %s)",
            self._cid,
            call.stream_sid,
            call.call_sid,
            "withheld" if call.caller_withheld else call.caller_e164,
        )
        self.pacer.bind(message.stream_sid)
        self._timers[IDLE_TIMEOUT].arm(settings.idle_hangup_seconds)
        self._timers[MAX_DURATION].arm(settings.max_call_seconds)
        self._spawn(self._playback_loop(), "playback")

        if settings.twilio_enable_recording and self._services.call_control and call.call_sid:
            self._spawn(self._start_recording(call.call_sid), "recording")

        self._greeting_text = self._context.opening_script()
        self._inbox.put_nowait(Announce(self._greeting_text, "greeting"))
        await self._open_dialogue()

    async def _open_dialogue(self) -> None:
        factory = self._services.dialogue_factory
        if factory is None:
            LOGGER.warning("[%s] no dialogue collaborator configured", self._cid)
            return
        dialogue = factory(self._cid, self._context.system_instruction())
        try:
            await dialogue.connect()
            if self._greeting_text:
                await dialogue.add_assistant_text(self._greeting_text)
        except UpstreamError as exc:
            LOGGER.error("[%s] dialogue session unavailable: %s", self._cid, exc.detail)
            return
        self._dialogue = dialogue
        self._dialogue_ready = True
        self._spawn(self._receive_upstream(dialogue), "upstream")

    async def _on_media(self, message: MediaMessage) -> None:
        if not message.inbound or not self.started:
            return
        self.inbound_frames += 1
        self._timers[IDLE_TIMEOUT].arm(self._services.settings.idle_hangup_seconds)
        if self.gate.suppress_inbound:
            self.suppressed_frames += 1
            return
        if self._dialogue is None or not self._dialogue_ready:
            return
        try:
            await self._dialogue.send_audio(message.audio())
        except MalformedMessage as exc:
            LOGGER.debug("[%s] bad media payload: %s", self._cid, exc.detail)
        except UpstreamError as exc:
            if not self._audio_error_logged:
                LOGGER.warning("[%s] forwarding caller audio failed: %s", self._cid, exc.detail)
                self._audio_error_logged = True

    async def _send_frame(self, stream_sid: str, frame: bytes) -> None:
        await self._transport.send_text(media_message(stream_sid, frame))

    async def _start_recording(self, call_sid: str) -> None:
        control = self._services.call_control
        if control is None:
            return
        try:
            await control.start_recording(call_sid)
        except UpstreamError as exc:
            LOGGER.warning("[%s] recording not started: %s", self._cid, exc.detail)

    # -- upstream receiver ----------------------------------------------

    async def _receive_upstream(self, dialogue: DialogueSession) -> None:
        try:
            async for event in dialogue.events():
                translated = self._translate(event)
                if translated is not None:
                    self._inbox.put_nowait(translated)
        except UpstreamError as exc:
            self._dialogue_ready = False
            if not self._terminated:
                self._inbox.put_nowait(UpstreamFailed(exc.detail, fatal=True))
            return
        self._dialogue_ready = False
        if not self._terminated:
            self._inbox.put_nowait(UpstreamFailed("dialogue session closed", fatal=True))

    def _translate(self, event: upstream.UpstreamEvent) -> GateEvent | None:
        if isinstance(event, upstream.TranscriptCompleted):
            text = event.transcript.strip()
            return TranscriptArrived(text) if text else None
        if isinstance(event, upstream.SpeechStarted):
            return CallerSpeechStarted()
        if isinstance(event, upstream.SpeechStopped):
            return CallerSpeechStopped()
        if isinstance(event, upstream.ResponseTextDone):
            return ResponseText(event.text, event.response_id)
        if isinstance(event, upstream.ResponseDone):
            return ResponseFinished(event.response.id, event.response.status)
        if isinstance(event, upstream.ErrorEvent):
            return UpstreamFailed(f"{event.error.code or event.error.type}: {event.error.message}")
        return None

    # -- gate task ------------------------------------------------------

    async def _gate_loop(self) -> None:
        while True:
            event = await self._inbox.get()
            if isinstance(event, Shutdown):
                return
            try:
                if isinstance(event, TranscriptArrived):
                    self.call.append("caller", event.text)
                    self.extractor.observe_caller(event.text)
                await self.gate.handle(event)
            except Exception as exc:
                LOGGER.exception("[%s] handling %s failed: %s", self._cid, type(event).__name__, exc)

    # -- TurnActions ----------------------------------------------------

    @property
    def has_secondary_dialogue(self) -> bool:
        return self._services.secondary_llm is not None

    async def request_response(self) -> None:
        if self._dialogue is None or not self._dialogue_ready:
            raise UpstreamError("dialogue session unavailable")
        await self._dialogue.request_response()

    async def cancel_response(self) -> None:
        if self._dialogue is not None and self._dialogue_ready:
            await self._dialogue.cancel_response()

    async def secondary_response(self) -> str | None:
        llm = self._services.secondary_llm
        if llm is None:
            return None
        messages = build_llm_history(self._context.system_instruction(), self.call.transcript)
        text = (await llm.chat(messages, temperature=0.3)).strip()
        if text and self._dialogue is not None and self._dialogue_ready:
            try:
                await self._dialogue.add_assistant_text(text)
            except UpstreamError as exc:
                LOGGER.debug("[%s] could not mirror secondary answer upstream: %s", self._cid, exc.detail)
        return text or None

    def speak(self, utterance: Utterance) -> None:
        self.call.append("assistant", utterance.text)
        self.extractor.observe_assistant(utterance.text)
        self._speech.put_nowait(utterance)

    # -- playback worker ------------------------------------------------

    async def _playback_loop(self) -> None:
        while True:
            utterance = await self._speech.get()
            detail = await self._play(utterance)
            if detail is not None:
                self._inbox.put_nowait(SynthesisFailed(utterance, detail))
                continue
            await self.pacer.wait_drained()
            self._inbox.put_nowait(PlaybackFinished(utterance))
            if utterance.kind in ("no_input", "apology") and self._dialogue is not None and self._dialogue_ready:
                try:
                    await self._dialogue.add_assistant_text(utterance.text)
                except UpstreamError as exc:
                    LOGGER.debug("[%s] could not mirror %s upstream: %s", self._cid, utterance.kind, exc.detail)

    async def _play(self, utterance: Utterance) -> str | None:
        """Stream one utterance into the pacer; returns a failure detail or None."""

        cache = self._services.greeting_cache
        if utterance.kind == "greeting" and cache is not None:
            audio = cache.get(utterance.text)
            if audio:
                self.pacer.enqueue(audio)
                return None

        providers = [p for p in (self._services.synthesizer, self._services.secondary_synthesizer) if p]
        if not providers:
            return "no synthesizer configured"
        detail = ""
        for index, synthesizer in enumerate(providers):
            # The configured voice is a primary provider voice id.
            voice = self._context.voice if index == 0 else None
            enqueued = False
            try:
                async for chunk in synthesizer.stream(utterance.text, voice=voice):
                    self.pacer.enqueue(chunk)
                    enqueued = True
                return None
            except Exception as exc:
                detail = f"{synthesizer.name}: {exc}"
                LOGGER.warning("[%s] synthesis via %s failed: %s", self._cid, synthesizer.name, exc)
                if enqueued:
                    LOGGER.warning("[%s] %s failed mid-utterance, not replaying it", self._cid, synthesizer.name)
                    break
        return detail

    # -- teardown -------------------------------------------------------

    async def terminate(self, reason: str) -> FinalizationOutcome | None:
        if self._terminated:
            return self.outcome
        self._terminated = True
        self.call.ended_at = utcnow()
        LOGGER.info("[%s] session ending: %s", self._cid, reason)

        self._timers.cancel_all()
        self.gate.close()
        self._inbox.put_nowait(Shutdown(reason))
        await self.pacer.close()

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._dialogue is not None:
            self._dialogue_ready = False
            try:
                await self._dialogue.close()
            except Exception as exc:
                LOGGER.debug("[%s] dialogue close failed: %s", self._cid, exc)

        control = self._services.call_control
        if reason in (IDLE_TIMEOUT, MAX_DURATION) and control is not None and self.call.call_sid:
            try:
                await control.hangup(self.call.call_sid)
            except UpstreamError as exc:
                LOGGER.warning("[%s] hangup failed: %s", self._cid, exc.detail)

        try:
            if self.started:
                self.outcome = await self._services.finalizer.finalize(self.call, self.lead, reason)
            else:
                LOGGER.info("[%s] stream closed before start, nothing to finalize", self._cid)
        finally:
            await self._transport.close()
        return self.outcome

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{name}-{self._cid}")
        self._tasks.append(task)
        return task
