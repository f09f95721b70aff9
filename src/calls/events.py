"""Messages posted to a call's TurnGate inbox.

The upstream receiver task, the playback worker and the gate's own timers
only communicate with the gate through these messages; the gate task is the
single writer of turn-taking state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

UtteranceKind = Literal["greeting", "response", "no_input", "apology"]


@dataclass(frozen=True, slots=True)
class Utterance:
    id: int
    text: str
    kind: UtteranceKind


@dataclass(frozen=True, slots=True)
class TranscriptArrived:
    text: str


@dataclass(frozen=True, slots=True)
class CallerSpeechStarted:
    pass


@dataclass(frozen=True, slots=True)
class CallerSpeechStopped:
    pass


@dataclass(frozen=True, slots=True)
class ResponseText:
    text: str
    response_id: str | None = None


@dataclass(frozen=True, slots=True)
class ResponseFinished:
    response_id: str | None = None
    status: str = "completed"


@dataclass(frozen=True, slots=True)
class UpstreamFailed:
    detail: str
    fatal: bool = False


@dataclass(frozen=True, slots=True)
class Announce:
    text: str
    kind: UtteranceKind = "greeting"


@dataclass(frozen=True, slots=True)
class PlaybackFinished:
    utterance: Utterance


@dataclass(frozen=True, slots=True)
class SynthesisFailed:
    utterance: Utterance
    detail: str


@dataclass(frozen=True, slots=True)
class TimerFired:
    name: str
    generation: int


@dataclass(frozen=True, slots=True)
class Shutdown:
    reason: str


GateEvent = Union[
    TranscriptArrived,
    CallerSpeechStarted,
    CallerSpeechStopped,
    ResponseText,
    ResponseFinished,
    UpstreamFailed,
    Announce,
    PlaybackFinished,
    SynthesisFailed,
    TimerFired,
    Shutdown,
]
