from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from calls.errors import ConfigurationMissing, UpstreamError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    public_base_url: str | None
    api_base_url: str = "https://api.twilio.com/2010-04-01"

    def recording_media_url(self, recording_sid: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/Accounts/{self.account_sid}/Recordings/{recording_sid}.mp3"

    def public_recording_url(self, recording_sid: str) -> str | None:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url.rstrip('/')}/recordings/{recording_sid}.mp3"


def get_twilio_config(settings: Settings | None = None) -> TwilioConfig:
    settings = settings or get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise ConfigurationMissing("Twilio credentials are not configured")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        public_base_url=settings.public_base_url.rstrip("/") if settings.public_base_url else None,
        api_base_url=settings.twilio_api_base_url,
    )


def build_twilio_client(cfg: TwilioConfig):
    from twilio.rest import Client

    return Client(cfg.account_sid, cfg.auth_token)


class TwilioCallControl:
    """Call-level REST operations; the SDK is blocking, so calls run in a thread."""

    def __init__(self, client) -> None:
        self._client = client

    async def start_recording(self, call_sid: str) -> str:
        from twilio.base.exceptions import TwilioException

        try:
            recording = await asyncio.to_thread(
                self._client.calls(call_sid).recordings.create,
                recording_channels="dual",
                recording_track="both",
            )
        except TwilioException as exc:
            raise UpstreamError(f"Twilio recording start failed: {exc}") from exc
        LOGGER.info("Recording %s started for call %s", recording.sid, call_sid)
        return str(recording.sid)

    async def hangup(self, call_sid: str) -> None:
        from twilio.base.exceptions import TwilioException

        try:
            await asyncio.to_thread(self._client.calls(call_sid).update, status="completed")
        except TwilioException as exc:
            raise UpstreamError(f"Twilio hangup failed: {exc}") from exc
        LOGGER.info("Call %s hung up", call_sid)
