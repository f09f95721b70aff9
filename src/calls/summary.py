"""Optional post-call CRM summary from the secondary LLM.

The summary is informational only; the lead decision never reads it.
"""

from __future__ import annotations

import json
import logging

from calls.schemas import CallState
from llm.base import BaseLLMClient
from prompts.loader import load_prompt

LOGGER = logging.getLogger(__name__)


class CallSummarizer:
    def __init__(self, llm_client: BaseLLMClient, *, max_entries: int = 40) -> None:
        self._llm = llm_client
        self._max_entries = max_entries

    async def summarize(self, call: CallState) -> str | None:
        entries = call.transcript[-self._max_entries :]
        transcript = "\n".join(f"{entry.role.upper()}: {entry.text}" for entry in entries)
        messages = [
            {"role": "system", "content": load_prompt("summary_system.txt")},
            {"role": "user", "content": "Transcript:\n" + transcript},
        ]
        raw_response = await self._llm.chat(messages, temperature=0.0, max_tokens=200)
        try:
            payload = json.loads(raw_response)
        except json.JSONDecodeError:
            LOGGER.warning("[%s] summary response not JSON: %s", call.correlation_id, raw_response[:200])
            return None

        summary = payload.get("summary") if isinstance(payload, dict) else None
        if not isinstance(summary, str) or not summary.strip():
            return None
        return summary.strip()
