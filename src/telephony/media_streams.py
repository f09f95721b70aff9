"""Twilio Media Streams wire messages.

Inbound messages are decoded into typed models keyed by ``event``; anything
that does not match one of them is a :class:`MalformedMessage`.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from calls.errors import MalformedMessage


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ConnectedMessage(_WireModel):
    event: Literal["connected"]
    protocol: str | None = None


class StreamStart(_WireModel):
    stream_sid: str = Field(default="", alias="streamSid")
    call_sid: str = Field(default="", alias="callSid")
    account_sid: str = Field(default="", alias="accountSid")
    tracks: list[str] = Field(default_factory=list)
    custom_parameters: dict[str, str] = Field(default_factory=dict, alias="customParameters")


class StartMessage(_WireModel):
    event: Literal["start"]
    stream_sid: str = Field(alias="streamSid")
    start: StreamStart

    @property
    def caller(self) -> str:
        params = self.start.custom_parameters
        return params.get("caller") or params.get("from") or ""


class MediaPayload(_WireModel):
    track: str = "inbound"
    chunk: str | None = None
    timestamp: str | None = None
    payload: str


class MediaMessage(_WireModel):
    event: Literal["media"]
    stream_sid: str = Field(default="", alias="streamSid")
    media: MediaPayload

    @property
    def inbound(self) -> bool:
        return self.media.track in {"inbound", "inbound_track"}

    def audio(self) -> bytes:
        try:
            return base64.b64decode(self.media.payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedMessage("media payload is not base64") from exc


class MarkMessage(_WireModel):
    event: Literal["mark"]
    stream_sid: str = Field(default="", alias="streamSid")
    mark: dict[str, str] = Field(default_factory=dict)


class StopMessage(_WireModel):
    event: Literal["stop"]
    stream_sid: str = Field(default="", alias="streamSid")


TransportMessage = Annotated[
    Union[ConnectedMessage, StartMessage, MediaMessage, MarkMessage, StopMessage],
    Field(discriminator="event"),
]

_MESSAGE_ADAPTER: TypeAdapter[TransportMessage] = TypeAdapter(TransportMessage)


def parse_transport_message(text: str | bytes) -> TransportMessage:
    try:
        return _MESSAGE_ADAPTER.validate_json(text)
    except ValidationError as exc:
        raise MalformedMessage(f"unrecognized transport message: {exc.error_count()} errors") from exc


def media_message(stream_sid: str, frame: bytes) -> str:
    """Outbound frame message, one per pacer tick."""

    return json.dumps(
        {
            "event": "media",
            "streamSid": stream_sid,
            "media": {"payload": base64.b64encode(frame).decode("ascii")},
        }
    )