"""Typed decoding of realtime dialogue server events.

Each supported protocol revision registers a tagged union keyed on the
``type`` field. Messages whose type is not part of the union, or whose shape
does not match the registered model, raise :class:`UpstreamProtocolError`.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from calls.errors import UpstreamProtocolError


class _ServerEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    event_id: str | None = None


class SessionReady(_ServerEvent):
    type: Literal["session.created", "session.updated"]


class SpeechStarted(_ServerEvent):
    type: Literal["input_audio_buffer.speech_started"]
    item_id: str | None = None


class SpeechStopped(_ServerEvent):
    type: Literal["input_audio_buffer.speech_stopped"]
    item_id: str | None = None


class TranscriptCompleted(_ServerEvent):
    type: Literal["conversation.item.input_audio_transcription.completed"]
    item_id: str | None = None
    transcript: str


class ResponseRef(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    status: str = "in_progress"
    status_details: dict[str, Any] | None = None


class ResponseCreated(_ServerEvent):
    type: Literal["response.created"]
    response: ResponseRef


class ResponseTextDone(_ServerEvent):
    type: Literal["response.text.done"]
    response_id: str
    text: str


class OutputTextDone(ResponseTextDone):
    type: Literal["response.output_text.done"]  # type: ignore[assignment]


class ResponseDone(_ServerEvent):
    type: Literal["response.done"]
    response: ResponseRef


class ErrorDetail(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    type: str = ""
    code: str | None = None
    message: str = ""


class ErrorEvent(_ServerEvent):
    type: Literal["error"]
    error: ErrorDetail


class BetaIgnoredEvent(_ServerEvent):
    type: Literal[
        "conversation.created",
        "conversation.item.created",
        "response.text.delta",
        "input_audio_buffer.committed",
        "input_audio_buffer.cleared",
        "conversation.item.input_audio_transcription.delta",
        "conversation.item.input_audio_transcription.failed",
        "conversation.item.truncated",
        "conversation.item.deleted",
        "response.output_item.added",
        "response.output_item.done",
        "response.content_part.added",
        "response.content_part.done",
        "rate_limits.updated",
    ]


class GaIgnoredEvent(_ServerEvent):
    type: Literal[
        "conversation.item.added",
        "conversation.item.done",
        "input_audio_buffer.timeout_triggered",
        "response.output_text.delta",
        "input_audio_buffer.committed",
        "input_audio_buffer.cleared",
        "conversation.item.input_audio_transcription.delta",
        "conversation.item.input_audio_transcription.failed",
        "conversation.item.truncated",
        "conversation.item.deleted",
        "response.output_item.added",
        "response.output_item.done",
        "response.content_part.added",
        "response.content_part.done",
        "rate_limits.updated",
    ]


IgnoredEvent = BetaIgnoredEvent | GaIgnoredEvent

UpstreamEvent = Union[
    SessionReady,
    SpeechStarted,
    SpeechStopped,
    TranscriptCompleted,
    ResponseCreated,
    ResponseTextDone,
    ResponseDone,
    ErrorEvent,
    BetaIgnoredEvent,
    GaIgnoredEvent,
]

BETA_REVISION = "2024-10-01"
GA_REVISION = "2025-08-28"

_DECODERS: dict[str, TypeAdapter[Any]] = {
    BETA_REVISION: TypeAdapter(
        Annotated[
            Union[
                SessionReady,
                SpeechStarted,
                SpeechStopped,
                TranscriptCompleted,
                ResponseCreated,
                ResponseTextDone,
                ResponseDone,
                ErrorEvent,
                BetaIgnoredEvent,
            ],
            Field(discriminator="type"),
        ]
    ),
    GA_REVISION: TypeAdapter(
        Annotated[
            Union[
                SessionReady,
                SpeechStarted,
                SpeechStopped,
                TranscriptCompleted,
                ResponseCreated,
                OutputTextDone,
                ResponseDone,
                ErrorEvent,
                GaIgnoredEvent,
            ],
            Field(discriminator="type"),
        ]
    ),
}

SUPPORTED_REVISIONS = tuple(_DECODERS)


def decode_event(raw: str | bytes, revision: str = BETA_REVISION) -> UpstreamEvent:
    """Decode one server message for the given protocol revision."""

    adapter = _DECODERS.get(revision)
    if adapter is None:
        raise UpstreamProtocolError(f"Unsupported realtime protocol revision: {revision}")
    try:
        return adapter.validate_json(raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.error_count() else {}
        raise UpstreamProtocolError(
            f"Undecodable realtime event ({first.get('type', 'invalid')}): {first.get('msg', exc)}"
        ) from exc
