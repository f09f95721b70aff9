"""Realtime dialogue session over WebSockets.

The session is configured for text-only output: speech recognition and
response generation happen upstream, audio synthesis happens locally.
Automatic responses are disabled so the TurnGate alone decides when a
response is requested.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from calls.errors import ConfigurationMissing, UpstreamError, UpstreamProtocolError, UpstreamTimeout
from config.settings import Settings
from dialogue.events import BETA_REVISION, SUPPORTED_REVISIONS, UpstreamEvent, decode_event

LOGGER = logging.getLogger(__name__)


class DialogueSession(ABC):
    """Bidirectional streaming session with the dialogue collaborator."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the session and apply its configuration."""

    @abstractmethod
    async def send_audio(self, ulaw: bytes) -> None:
        """Append caller audio (mu-law 8 kHz) to the input buffer."""

    @abstractmethod
    async def request_response(self) -> None:
        """Ask for exactly one response over the conversation so far."""

    @abstractmethod
    async def cancel_response(self) -> None:
        """Cancel the response currently being generated, if any."""

    @abstractmethod
    async def add_assistant_text(self, text: str) -> None:
        """Record text spoken locally (greeting, fallbacks) as assistant turn."""

    @abstractmethod
    def events(self) -> AsyncIterator[UpstreamEvent]:
        """Yield decoded server events until the session closes."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session."""


@dataclass(frozen=True, slots=True)
class RealtimeConfig:
    url: str
    model: str
    api_key: str
    revision: str = BETA_REVISION
    instructions: str = ""
    transcription_model: str = "whisper-1"
    vad_silence_ms: int = 900
    vad_prefix_ms: int = 200
    connect_timeout: float = 10.0


class RealtimeDialogueSession(DialogueSession):
    """OpenAI-Realtime-style session speaking JSON events over a WebSocket."""

    def __init__(self, config: RealtimeConfig, *, call_id: str = "-") -> None:
        if config.revision not in SUPPORTED_REVISIONS:
            raise ConfigurationMissing(f"Unsupported realtime protocol revision: {config.revision}")
        self._config = config
        self._call_id = call_id
        self._ws: Any = None

    @property
    def _beta(self) -> bool:
        return self._config.revision == BETA_REVISION

    async def connect(self) -> None:
        url = f"{self._config.url}?{urlencode({'model': self._config.model})}"
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        if self._beta:
            headers["OpenAI-Beta"] = "realtime=v1"
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(url, additional_headers=headers, max_size=None),
                timeout=self._config.connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout("Realtime connect timed out") from exc
        except (OSError, WebSocketException) as exc:
            raise UpstreamError(f"Realtime connect failed: {exc}") from exc

        await self._send(self._session_update())
        LOGGER.info("[%s] realtime session connected (model=%s)", self._call_id, self._config.model)

    async def send_audio(self, ulaw: bytes) -> None:
        await self._send(
            {"type": "input_audio_buffer.append", "audio": base64.b64encode(ulaw).decode("ascii")}
        )

    async def request_response(self) -> None:
        await self._send({"type": "response.create"})

    async def cancel_response(self) -> None:
        await self._send({"type": "response.cancel"})

    async def add_assistant_text(self, text: str) -> None:
        content_type = "text" if self._beta else "output_text"
        await self._send(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": content_type, "text": text}],
                },
            }
        )

    async def events(self) -> AsyncIterator[UpstreamEvent]:
        if self._ws is None:
            raise UpstreamError("Realtime session is not connected")
        try:
            async for raw in self._ws:
                try:
                    yield decode_event(raw, self._config.revision)
                except UpstreamProtocolError as exc:
                    LOGGER.warning("[%s] dropping realtime message: %s", self._call_id, exc.detail)
        except ConnectionClosedError as exc:
            raise UpstreamError(f"Realtime connection lost: {exc}") from exc

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise UpstreamError("Realtime session is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise UpstreamError(f"Realtime send failed: {exc}") from exc

    def _session_update(self) -> dict[str, Any]:
        turn_detection = {
            "type": "server_vad",
            "silence_duration_ms": self._config.vad_silence_ms,
            "prefix_padding_ms": self._config.vad_prefix_ms,
            "create_response": False,
        }
        transcription = {"model": self._config.transcription_model}
        if self._beta:
            session = {
                "modalities": ["text"],
                "instructions": self._config.instructions,
                "input_audio_format": "g711_ulaw",
                "input_audio_transcription": transcription,
                "turn_detection": turn_detection,
            }
        else:
            session = {
                "type": "realtime",
                "output_modalities": ["text"],
                "instructions": self._config.instructions,
                "audio": {
                    "input": {
                        "format": {"type": "audio/pcmu"},
                        "transcription": transcription,
                        "turn_detection": {**turn_detection, "interrupt_response": False},
                    }
                },
            }
        return {"type": "session.update", "session": session}


DialogueFactory = Callable[[str, str], DialogueSession]


def build_dialogue_factory(settings: Settings) -> DialogueFactory:
    """Return a factory ``(call_id, instructions) -> DialogueSession``."""

    if not settings.realtime_api_key:
        raise ConfigurationMissing("REALTIME_API_KEY is not configured")

    def _factory(call_id: str, instructions: str) -> DialogueSession:
        config = RealtimeConfig(
            url=settings.realtime_url,
            model=settings.realtime_model,
            api_key=settings.realtime_api_key or "",
            revision=settings.realtime_protocol_revision,
            instructions=instructions,
            transcription_model=settings.realtime_transcription_model,
            vad_silence_ms=settings.realtime_vad_silence_ms,
            vad_prefix_ms=settings.realtime_vad_prefix_ms,
        )
        return RealtimeDialogueSession(config, call_id=call_id)

    return _factory
