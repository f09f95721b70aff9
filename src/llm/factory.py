"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import Settings, get_settings
from llm.base import BaseLLMClient


def build_llm_client(settings: Settings | None = None) -> BaseLLMClient | None:
    """Instantiate the configured LLM connector, or ``None`` when disabled."""

    settings = settings or get_settings()
    if settings.llm_provider == "none":
        return None
    if settings.llm_provider == "openai":
        from llm.openai_client import OpenAIClient

        return OpenAIClient(settings)
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
