"""Notification delivery to the configured webhook endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

import httpx

from calls.schemas import NotificationEvent, NotificationKind
from config.settings import Settings

LOGGER = logging.getLogger(__name__)


class WebhookSink:
    """POSTs each notification as JSON to the URL configured for its kind.

    Failures are retried with linear backoff and then dropped; ``deliver``
    never raises.
    """

    def __init__(
        self,
        urls: Mapping[NotificationKind, str | None],
        *,
        timeout: float = 7.0,
        max_attempts: int = 3,
        backoff: float = 0.35,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._urls = dict(urls)
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._client = client
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> WebhookSink:
        urls = {
            NotificationKind.CALL_LOG: settings.call_log_webhook_url,
            NotificationKind.FINAL: settings.final_webhook_url,
            NotificationKind.ABANDONED: settings.abandoned_webhook_url,
        }
        return cls(
            urls,
            timeout=settings.webhook_timeout_seconds,
            max_attempts=settings.webhook_max_attempts,
            backoff=settings.webhook_backoff_ms / 1000.0,
            **kwargs,
        )

    def url_for(self, kind: NotificationKind) -> str | None:
        return self._urls.get(kind) or None

    async def deliver(self, event: NotificationEvent) -> bool:
        url = self.url_for(event.kind)
        if not url:
            LOGGER.info("No webhook configured for %s, skipping (call %s)", event.kind.value, event.call_sid)
            return False

        if self._client is not None:
            return await self._deliver_with(self._client, url, event)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._deliver_with(client, url, event)

    async def _deliver_with(self, client: httpx.AsyncClient, url: str, event: NotificationEvent) -> bool:
        payload = event.model_dump(mode="json")["payload"]
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                LOGGER.warning(
                    "Webhook %s attempt %d/%d failed for call %s: %s",
                    event.kind.value,
                    attempt,
                    self._max_attempts,
                    event.call_sid,
                    exc,
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff * attempt)
                continue

            LOGGER.info(
                "Webhook %s delivered for call %s (status %d, attempt %d)",
                event.kind.value,
                event.call_sid,
                response.status_code,
                attempt,
            )
            return True

        LOGGER.warning("Webhook %s dropped for call %s after %d attempts", event.kind.value, event.call_sid, self._max_attempts)
        return False
