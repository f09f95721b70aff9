"""Best-effort lookup of the recording made for a finished call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from calls.schemas import RecordingInfo
from integrations.twilio_client import TwilioConfig

LOGGER = logging.getLogger(__name__)


class TwilioRecordingResolver:
    """Polls the call's recordings until one shows up or attempts run out.

    Twilio publishes the recording resource only after the call has been
    processed, so the first lookups right after hangup usually come back
    empty.
    """

    def __init__(
        self,
        client,
        cfg: TwilioConfig,
        *,
        max_attempts: int = 10,
        backoff: float = 1.5,
        backoff_cap: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cfg = cfg
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._backoff_cap = backoff_cap
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return min(self._backoff * attempt, self._backoff_cap)

    async def resolve(self, call_sid: str) -> RecordingInfo | None:
        from twilio.base.exceptions import TwilioException

        for attempt in range(1, self._max_attempts + 1):
            try:
                recordings = await asyncio.to_thread(self._client.recordings.list, call_sid=call_sid, limit=1)
            except TwilioException as exc:
                LOGGER.warning("Recording lookup %d/%d for %s failed: %s", attempt, self._max_attempts, call_sid, exc)
                recordings = []

            if recordings:
                sid = str(recordings[0].sid)
                LOGGER.info("Recording %s resolved for call %s (attempt %d)", sid, call_sid, attempt)
                return RecordingInfo(
                    provider="twilio",
                    sid=sid,
                    url=self._cfg.recording_media_url(sid),
                    url_public=self._cfg.public_recording_url(sid),
                )
            if attempt < self._max_attempts:
                await self._sleep(self.delay_for(attempt))

        LOGGER.info("No recording found for call %s after %d attempts", call_sid, self._max_attempts)
        return None
