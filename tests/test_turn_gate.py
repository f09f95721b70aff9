from __future__ import annotations

import asyncio

from calls.errors import UpstreamError
from calls.events import (
    Announce,
    CallerSpeechStarted,
    CallerSpeechStopped,
    PlaybackFinished,
    ResponseFinished,
    ResponseText,
    SynthesisFailed,
    TimerFired,
    TranscriptArrived,
    UpstreamFailed,
)
from calls.turn_gate import DEBOUNCE, NO_INPUT, TurnGate, TurnGateConfig, TurnPhase

FAST = TurnGateConfig(
    debounce=0.02,
    no_input_delay=0.02,
    fallback_min_gap=1.5,
    fallback_cooldown=8.0,
    suppression_window=0.02,
    response_timeout=0.05,
    fallback_text="Are you still there?",
    apology_text="Sorry, technical problem.",
)


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeActions:
    def __init__(self, *, secondary: str | None = None, fail_request: bool = False) -> None:
        self.spoken = []
        self.requests = 0
        self.cancels = 0
        self.secondary_calls = 0
        self._secondary = secondary
        self._fail_request = fail_request

    @property
    def has_secondary_dialogue(self) -> bool:
        return self._secondary is not None

    async def request_response(self) -> None:
        self.requests += 1
        if self._fail_request:
            raise UpstreamError("dialogue down")

    async def cancel_response(self) -> None:
        self.cancels += 1

    async def secondary_response(self) -> str | None:
        self.secondary_calls += 1
        return self._secondary

    def speak(self, utterance) -> None:
        self.spoken.append(utterance)


class GateHarness:
    """Runs a gate the way a call session does: one consumer draining the inbox."""

    def __init__(self, actions: FakeActions, *, config: TurnGateConfig = FAST, clock=None) -> None:
        self.actions = actions
        self.clock = clock or FakeClock()
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.gate = TurnGate(actions, self.inbox.put_nowait, config, call_id="test", clock=self.clock)

    async def send(self, *events) -> None:
        for event in events:
            await self.gate.handle(event)

    async def pump(self, duration: float) -> None:
        loop = asyncio.get_running_loop()
        end = loop.time() + duration
        while True:
            remaining = end - loop.time()
            if remaining <= 0:
                return
            try:
                event = await asyncio.wait_for(self.inbox.get(), remaining)
            except asyncio.TimeoutError:
                return
            await self.gate.handle(event)


def _run(coro):
    return asyncio.run(coro)


def test_transcript_burst_produces_single_request_after_debounce() -> None:
    async def scenario():
        harness = GateHarness(FakeActions(), config=TurnGateConfig(debounce=0.02, response_timeout=5))
        await harness.send(TranscriptArrived("hi"), TranscriptArrived("my name"), TranscriptArrived("is Dana"))
        phase = harness.gate.phase
        await harness.pump(0.08)
        harness.gate.close()
        return phase, harness

    phase, harness = _run(scenario())

    assert phase is TurnPhase.DEBOUNCE
    assert harness.actions.requests == 1
    assert harness.gate.phase is TurnPhase.IN_FLIGHT


def test_transcript_while_in_flight_does_not_request_again() -> None:
    async def scenario():
        harness = GateHarness(FakeActions(), config=TurnGateConfig(debounce=0.01, response_timeout=5))
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.04)
        await harness.send(TranscriptArrived("are you there"))
        debounce_armed = harness.gate.timer(DEBOUNCE).armed
        await harness.pump(0.04)
        requests_in_flight = harness.actions.requests
        await harness.send(ResponseFinished("resp_1", "completed"))
        return debounce_armed, requests_in_flight, harness

    debounce_armed, requests_in_flight, harness = _run(scenario())

    assert debounce_armed is False
    assert requests_in_flight == 1
    assert harness.gate.state.in_flight is False
    assert harness.gate.phase is TurnPhase.IDLE


def test_debounce_elapsing_while_in_flight_is_skipped() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(TranscriptArrived("hello"))
        harness.gate.state.in_flight = True
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert harness.actions.requests == 0
    assert harness.gate.state.requests_skipped == 1


def test_stale_timer_shot_is_ignored() -> None:
    async def scenario():
        harness = GateHarness(FakeActions(), config=TurnGateConfig(debounce=5))
        await harness.send(TranscriptArrived("hello"))
        stale = harness.gate.timer(DEBOUNCE).generation
        await harness.send(TranscriptArrived("again"))
        await harness.send(TimerFired(DEBOUNCE, stale))
        harness.gate.close()
        return harness

    harness = _run(scenario())

    assert harness.actions.requests == 0


def test_response_text_is_spoken_and_suppresses_inbound_until_window_elapses() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.04)
        await harness.send(ResponseText("Hi, who is calling?", "resp_1"), ResponseFinished("resp_1"))
        speaking = (harness.gate.phase, harness.gate.suppress_inbound)
        utterance = harness.actions.spoken[-1]
        await harness.send(PlaybackFinished(utterance))
        trailing = harness.gate.suppress_inbound
        await harness.pump(0.05)
        return speaking, trailing, utterance, harness

    speaking, trailing, utterance, harness = _run(scenario())

    assert speaking == (TurnPhase.SPEAKING, True)
    assert utterance.kind == "response"
    assert utterance.text == "Hi, who is calling?"
    assert trailing is True
    assert harness.gate.suppress_inbound is False
    assert harness.gate.phase is TurnPhase.IDLE


def test_overlapping_utterances_keep_suppression_until_last_finishes() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(Announce("Good morning"), ResponseText("Second"))
        first, second = harness.actions.spoken
        await harness.send(PlaybackFinished(first))
        await harness.pump(0.05)
        still_speaking = harness.gate.state.speaking
        await harness.send(PlaybackFinished(second))
        await harness.pump(0.05)
        return still_speaking, harness

    still_speaking, harness = _run(scenario())

    assert still_speaking is True
    assert harness.gate.state.speaking is False


def test_no_input_fallback_spoken_when_nothing_blocks() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(CallerSpeechStopped())
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert [u.kind for u in harness.actions.spoken] == ["no_input"]
    assert harness.actions.spoken[0].text == "Are you still there?"
    assert harness.gate.state.last_fallback_at == 100.0


def test_speech_started_cancels_pending_fallback() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(CallerSpeechStopped(), CallerSpeechStarted())
        armed = harness.gate.timer(NO_INPUT).armed
        await harness.pump(0.05)
        return armed, harness

    armed, harness = _run(scenario())

    assert armed is False
    assert harness.actions.spoken == []


def test_fallback_blocked_by_recent_transcript() -> None:
    gate = GateHarness(FakeActions()).gate
    gate.state.last_transcript_at = 99.0

    assert gate.fallback_blockers(100.0) == ["recent_transcript"]
    assert gate.fallback_blockers(101.0) == []


def test_fallback_blocked_while_response_in_flight() -> None:
    gate = GateHarness(FakeActions()).gate
    gate.state.in_flight = True

    assert gate.fallback_blockers(100.0) == ["response_in_flight"]


def test_fallback_blocked_during_cooldown() -> None:
    gate = GateHarness(FakeActions()).gate
    gate.state.last_fallback_at = 95.0

    assert gate.fallback_blockers(100.0) == ["cooldown"]
    assert gate.fallback_blockers(103.5) == []


def test_second_fallback_waits_for_cooldown() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())

        async def stop_and_play_out() -> None:
            await harness.send(CallerSpeechStopped())
            await harness.pump(0.05)
            for utterance in harness.actions.spoken[played:]:
                await harness.send(PlaybackFinished(utterance))
            await harness.pump(0.05)

        played = 0
        await stop_and_play_out()
        played = len(harness.actions.spoken)
        harness.clock.now += 3
        await stop_and_play_out()
        blocked = len(harness.actions.spoken)
        harness.clock.now += 6
        await stop_and_play_out()
        return blocked, harness

    blocked, harness = _run(scenario())

    assert blocked == 1
    assert [u.kind for u in harness.actions.spoken] == ["no_input", "no_input"]


def test_response_timeout_cancels_and_apologises() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.1)
        waiting_for_cancel = harness.gate.state.in_flight
        await harness.send(ResponseFinished("resp_1", "cancelled"))
        return waiting_for_cancel, harness

    waiting_for_cancel, harness = _run(scenario())

    assert harness.actions.requests == 1
    assert harness.actions.cancels == 1
    assert waiting_for_cancel is True
    assert harness.gate.state.in_flight is False
    assert [u.kind for u in harness.actions.spoken] == ["apology"]


def test_timed_out_response_stays_in_flight_until_upstream_finishes_it() -> None:
    async def scenario():
        config = TurnGateConfig(debounce=0.01, response_timeout=0.05, apology_text="sorry")
        harness = GateHarness(FakeActions(), config=config)
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.08)
        await harness.send(TranscriptArrived("hello again"), ResponseText("late answer", "resp_1"))
        await harness.pump(0.03)
        requests_before_ack = harness.actions.requests
        await harness.send(ResponseFinished("resp_1", "cancelled"), TranscriptArrived("still there?"))
        await harness.pump(0.03)
        harness.gate.close()
        return requests_before_ack, harness

    requests_before_ack, harness = _run(scenario())

    assert requests_before_ack == 1
    assert harness.actions.requests == 2
    assert [(u.kind, u.text) for u in harness.actions.spoken] == [("apology", "sorry")]


def test_unacknowledged_cancel_releases_the_turn_after_a_second_timeout() -> None:
    async def scenario():
        config = TurnGateConfig(debounce=0.01, response_timeout=0.05, apology_text="sorry")
        harness = GateHarness(FakeActions(), config=config)
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.085)
        cancelled = (harness.gate.state.in_flight, harness.gate.state.cancelled)
        await harness.pump(0.08)
        return cancelled, harness

    cancelled, harness = _run(scenario())

    assert cancelled == (True, True)
    assert harness.gate.state.in_flight is False
    assert harness.gate.state.cancelled is False
    assert harness.actions.cancels == 1


def test_failed_request_recovers_through_secondary_dialogue() -> None:
    async def scenario():
        actions = FakeActions(secondary="Could you tell me your name?", fail_request=True)
        harness = GateHarness(actions)
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert harness.actions.secondary_calls == 1
    assert harness.gate.state.in_flight is False
    assert [(u.kind, u.text) for u in harness.actions.spoken] == [("response", "Could you tell me your name?")]


def test_failed_request_without_secondary_apologises() -> None:
    async def scenario():
        harness = GateHarness(FakeActions(fail_request=True))
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert [u.text for u in harness.actions.spoken] == ["Sorry, technical problem."]


def test_failed_response_status_without_text_recovers() -> None:
    async def scenario():
        harness = GateHarness(FakeActions(), config=TurnGateConfig(debounce=0.01, apology_text="sorry"))
        await harness.send(TranscriptArrived("hello"))
        await harness.pump(0.03)
        await harness.send(ResponseFinished("resp_1", "failed"))
        harness.gate.close()
        return harness

    harness = _run(scenario())

    assert [u.kind for u in harness.actions.spoken] == ["apology"]


def test_fatal_upstream_loss_recovers_only_when_waiting_for_answer() -> None:
    async def scenario():
        idle = GateHarness(FakeActions())
        await idle.send(UpstreamFailed("socket closed", fatal=True))

        waiting = GateHarness(FakeActions(), config=TurnGateConfig(debounce=0.01, response_timeout=5))
        await waiting.send(TranscriptArrived("hello"))
        await waiting.pump(0.03)
        await waiting.send(UpstreamFailed("rate limited"))
        after_soft_error = list(waiting.actions.spoken)
        await waiting.send(UpstreamFailed("socket closed", fatal=True))
        waiting.gate.close()
        return idle, waiting, after_soft_error

    idle, waiting, after_soft_error = _run(scenario())

    assert idle.actions.spoken == []
    assert after_soft_error == []
    assert [u.kind for u in waiting.actions.spoken] == ["apology"]
    assert waiting.gate.state.in_flight is False


def test_synthesis_failure_speaks_apology_once() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(ResponseText("Let me check."))
        response = harness.actions.spoken[0]
        await harness.send(SynthesisFailed(response, "tts down"))
        apology = harness.actions.spoken[1]
        await harness.send(SynthesisFailed(apology, "tts down"))
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert [u.kind for u in harness.actions.spoken] == ["response", "apology"]
    assert harness.gate.state.pending_utterances == 0
    assert harness.gate.state.speaking is False


def test_close_cancels_every_timer() -> None:
    async def scenario():
        harness = GateHarness(FakeActions())
        await harness.send(TranscriptArrived("hello"), CallerSpeechStopped())
        harness.gate.close()
        await harness.pump(0.05)
        return harness

    harness = _run(scenario())

    assert harness.gate.state.timers.armed() == []
    assert harness.actions.requests == 0
    assert harness.actions.spoken == []


def test_fallback_blocked_while_an_answer_is_playing_or_queued() -> None:
    gate = GateHarness(FakeActions()).gate
    gate.state.pending_utterances = 1

    assert gate.fallback_blockers(100.0) == ["speaking"]
    gate.state.pending_utterances = 0
    gate.state.speaking = True
    assert gate.fallback_blockers(100.0) == ["speaking"]


def test_speech_stopped_after_its_transcript_arms_no_fallback() -> None:
    async def scenario():
        config = TurnGateConfig(debounce=0.01, no_input_delay=0.03, response_timeout=5)
        harness = GateHarness(FakeActions(), config=config)
        await harness.send(CallerSpeechStarted(), TranscriptArrived("I need a plumber"), CallerSpeechStopped())
        armed = harness.gate.timer(NO_INPUT).armed
        await harness.pump(0.02)
        await harness.send(ResponseText("Sure, what's your name?", "resp_1"), ResponseFinished("resp_1"))
        await harness.pump(0.05)
        harness.gate.close()
        return armed, harness

    armed, harness = _run(scenario())

    assert armed is False
    assert [u.kind for u in harness.actions.spoken] == ["response"]


def test_fallback_timer_does_not_speak_over_a_queued_answer() -> None:
    async def scenario():
        config = TurnGateConfig(debounce=0.01, no_input_delay=0.03, response_timeout=5)
        harness = GateHarness(FakeActions(), config=config)
        await harness.send(CallerSpeechStarted(), CallerSpeechStopped(), ResponseText("Hello there"))
        await harness.pump(0.06)
        harness.gate.close()
        return harness

    harness = _run(scenario())

    assert [u.kind for u in harness.actions.spoken] == ["response"]
