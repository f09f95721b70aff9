"""Pre-synthesized opening greeting audio."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from types import MappingProxyType

from calls.errors import UpstreamError
from config.context import RuntimeContext
from speech.tts import BaseSynthesizer

LOGGER = logging.getLogger(__name__)

# One representative local hour per time-of-day greeting.
_REPRESENTATIVE_HOURS = (8, 13, 19, 23)


class GreetingCache:
    """Opening greeting audio keyed by rendered text.

    Rebuilt after every context refresh and swapped in wholesale; sessions
    only ever read it.
    """

    def __init__(self, synthesizer: BaseSynthesizer) -> None:
        self._synthesizer = synthesizer
        self._entries: Mapping[str, bytes] = MappingProxyType({})

    def get(self, text: str) -> bytes | None:
        return self._entries.get(text)

    def __len__(self) -> int:
        return len(self._entries)

    async def warm(self, context: RuntimeContext) -> None:
        today = datetime.now(context.time_zone)
        texts = {
            context.opening_script(today.replace(hour=hour, minute=0, second=0, microsecond=0))
            for hour in _REPRESENTATIVE_HOURS
        }
        entries: dict[str, bytes] = {}
        for text in sorted(texts):
            if not text:
                continue
            try:
                chunks = [chunk async for chunk in self._synthesizer.stream(text, voice=context.voice)]
            except UpstreamError as exc:
                LOGGER.warning("Greeting pre-synthesis failed, keeping previous cache: %s", exc)
                return
            entries[text] = b"".join(chunks)

        self._entries = MappingProxyType(entries)
        LOGGER.info("Greeting cache warmed with %d variants (context v%d)", len(entries), context.version)
