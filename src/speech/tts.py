"""Streaming text-to-speech producing Twilio-ready mu-law 8 kHz audio."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from calls.errors import ConfigurationMissing, UpstreamError, UpstreamTimeout
from config.settings import Settings, get_settings
from telephony.g711 import PcmToUlawConverter

LOGGER = logging.getLogger(__name__)

OPENAI_PCM_RATE = 24000


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers."""

    name: str = "base"
    default_voice: str = ""

    @abstractmethod
    def stream(
        self, text: str, *, voice: str | None = None, style: float | None = None
    ) -> AsyncIterator[bytes]:
        """Yield mu-law 8 kHz audio chunks for ``text`` as they arrive."""

    async def aclose(self) -> None:
        return None

    def _configured_voice(self, settings: Settings) -> str:
        # TTS_VOICE names a voice of the primary provider only.
        if settings.tts_voice and settings.tts_provider == self.name:
            return settings.tts_voice
        return self.default_voice


class ElevenLabsSynthesizer(BaseSynthesizer):
    """ElevenLabs streaming endpoint, asked for ``ulaw_8000`` directly."""

    name = "elevenlabs"
    default_voice = "21m00Tcm4TlvDq8ikWAM"

    def __init__(self, settings: Settings | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        settings = settings or get_settings()
        if not settings.elevenlabs_api_key:
            raise ConfigurationMissing("ELEVENLABS_API_KEY is not configured")
        self._api_key = settings.elevenlabs_api_key
        self._base_url = settings.elevenlabs_base_url.rstrip("/")
        self._model_id = settings.elevenlabs_model_id
        self._voice = self._configured_voice(settings)
        self._style = settings.tts_style
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))

    async def stream(
        self, text: str, *, voice: str | None = None, style: float | None = None
    ) -> AsyncIterator[bytes]:
        url = f"{self._base_url}/v1/text-to-speech/{voice or self._voice}/stream"
        payload = {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
                "style": self._style if style is None else style,
            },
        }
        headers = {"xi-api-key": self._api_key, "Accept": "audio/basic"}
        try:
            async with self._client.stream(
                "POST",
                url,
                params={"output_format": "ulaw_8000"},
                json=payload,
                headers=headers,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise UpstreamError(
                        f"ElevenLabs returned {response.status_code}: {body[:200]!r}"
                    )
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout("ElevenLabs synthesis timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"ElevenLabs synthesis failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAISpeechSynthesizer(BaseSynthesizer):
    """OpenAI speech endpoint streaming raw PCM16 24 kHz, transcoded locally."""

    name = "openai"
    default_voice = "alloy"

    def __init__(self, settings: Settings | None = None) -> None:
        from openai import AsyncOpenAI

        settings = settings or get_settings()
        api_key = settings.llm_api_key or settings.realtime_api_key
        if not api_key:
            raise ConfigurationMissing("An OpenAI API key is required for OpenAI speech synthesis")
        self._client = AsyncOpenAI(api_key=api_key, timeout=15.0, max_retries=0)
        self._model = settings.openai_tts_model
        self._voice = self._configured_voice(settings)

    async def stream(
        self, text: str, *, voice: str | None = None, style: float | None = None
    ) -> AsyncIterator[bytes]:
        import openai

        converter = PcmToUlawConverter(OPENAI_PCM_RATE)
        try:
            async with self._client.audio.speech.with_streaming_response.create(
                model=self._model,
                voice=voice or self._voice,
                input=text,
                response_format="pcm",
            ) as response:
                async for chunk in response.iter_bytes(4800):
                    encoded = converter.feed(chunk)
                    if encoded:
                        yield encoded
        except openai.APITimeoutError as exc:
            raise UpstreamTimeout("OpenAI synthesis timed out") from exc
        except openai.OpenAIError as exc:
            raise UpstreamError(f"OpenAI synthesis failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.close()


def build_synthesizer(settings: Settings | None = None, provider: str | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = settings or get_settings()
    provider = provider or settings.tts_provider
    if provider == "elevenlabs":
        return ElevenLabsSynthesizer(settings)
    if provider == "openai":
        return OpenAISpeechSynthesizer(settings)
    raise ConfigurationMissing(f"Unsupported TTS provider: {provider}")
