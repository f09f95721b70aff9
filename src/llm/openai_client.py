"""OpenAI chat client used as secondary dialogue provider and call summarizer."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from openai import APIError, APITimeoutError, AsyncOpenAI

from calls.errors import ConfigurationMissing, UpstreamError, UpstreamTimeout
from config.settings import Settings, get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Chat Completions over ``AsyncOpenAI``; SDK errors surface as :class:`UpstreamError`."""

    def __init__(self, settings: Settings | None = None, *, timeout: float = 10.0) -> None:
        settings = settings or get_settings()
        if not settings.llm_api_key:
            raise ConfigurationMissing("LLM_API_KEY is not configured")

        self._client = AsyncOpenAI(
            api_key=settings.llm_api_key,
            base_url=settings.llm_endpoint or None,
            timeout=timeout,
            max_retries=0,
        )
        self._model = settings.llm_model

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
        max_tokens: int = 300,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=list(messages),
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except APITimeoutError as exc:
            raise UpstreamTimeout(f"{self._model} chat timed out") from exc
        except APIError as exc:
            raise UpstreamError(f"{self._model} chat failed: {exc}") from exc

        if not response.choices:
            LOGGER.warning("Chat completion from %s returned no choices", self._model)
            return ""
        return response.choices[0].message.content or ""
