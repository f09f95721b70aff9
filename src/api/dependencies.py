"""Process-wide collaborators shared by the route modules.

Built once in the application lifespan and stored on ``app.state.bridge``.
Missing credentials disable the feature they belong to instead of failing
startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from fastapi import Request, WebSocket

from calls.errors import ConfigurationMissing
from calls.finalization import FinalizationGate, FinalizationPolicy
from calls.session import CallServices
from config.context import ContextStore, build_context_loader
from config.settings import Settings
from integrations.twilio_client import TwilioConfig
from speech.tts import BaseSynthesizer

LOGGER = logging.getLogger(__name__)


@dataclass
class Bridge:
    settings: Settings
    context_store: ContextStore
    services: CallServices
    twilio_config: TwilioConfig | None = None
    dialogue_provider: str = "none"
    _closables: list[BaseSynthesizer] = field(default_factory=list)

    async def aclose(self) -> None:
        for synthesizer in self._closables:
            try:
                await synthesizer.aclose()
            except Exception as exc:
                LOGGER.warning("Closing synthesizer %s failed: %s", synthesizer.name, exc)


def _optional(feature: str, builder):
    try:
        return builder()
    except ConfigurationMissing as exc:
        LOGGER.error("%s disabled: %s", feature, exc.detail)
        return None


def build_bridge(settings: Settings) -> Bridge:
    # Lazy imports keep provider SDKs out of module import time.
    from calls.summary import CallSummarizer
    from db.repository import CallRecordRepository
    from dialogue.realtime import build_dialogue_factory
    from integrations.twilio_client import TwilioCallControl, build_twilio_client, get_twilio_config
    from integrations.twilio_recordings import TwilioRecordingResolver
    from integrations.webhooks import WebhookSink
    from llm.factory import build_llm_client
    from speech.greeting import GreetingCache
    from speech.tts import build_synthesizer

    dialogue_factory = _optional("Realtime dialogue", lambda: build_dialogue_factory(settings))
    secondary_llm = _optional("Secondary dialogue", lambda: build_llm_client(settings))
    synthesizer = _optional("Speech synthesis", lambda: build_synthesizer(settings, settings.tts_provider))
    secondary_synthesizer = None
    if settings.tts_secondary_provider and settings.tts_secondary_provider != settings.tts_provider:
        secondary_synthesizer = _optional(
            "Secondary speech synthesis",
            lambda: build_synthesizer(settings, settings.tts_secondary_provider),
        )

    twilio_config = _optional("Twilio REST", lambda: get_twilio_config(settings))
    call_control = None
    recordings = None
    if twilio_config is not None:
        twilio_client = build_twilio_client(twilio_config)
        call_control = TwilioCallControl(twilio_client)
        recordings = TwilioRecordingResolver(
            twilio_client,
            twilio_config,
            max_attempts=settings.recording_max_attempts,
            backoff=settings.recording_backoff_ms / 1000.0,
            backoff_cap=settings.recording_backoff_cap_ms / 1000.0,
        )

    summarizer = None
    if settings.lead_summary_enabled and secondary_llm is not None:
        summarizer = CallSummarizer(secondary_llm)

    finalizer = FinalizationGate(
        sink=WebhookSink.from_settings(settings),
        policy=FinalizationPolicy(
            subject_min_words=settings.subject_min_words,
            call_log_enabled=settings.call_log_at_end,
            time_zone=settings.time_zone,
        ),
        recordings=recordings,
        summarizer=summarizer,
        store=CallRecordRepository(),
    )
    greeting_cache = None
    if settings.greeting_cache_enabled and synthesizer is not None:
        greeting_cache = GreetingCache(synthesizer)

    services = CallServices(
        settings=settings,
        finalizer=finalizer,
        dialogue_factory=dialogue_factory,
        synthesizer=synthesizer,
        secondary_synthesizer=secondary_synthesizer,
        secondary_llm=secondary_llm,
        call_control=call_control,
        greeting_cache=greeting_cache,
    )
    context_store = ContextStore(build_context_loader(settings), ttl_seconds=settings.context_ttl_seconds)
    if greeting_cache is not None:
        context_store.subscribe(greeting_cache.warm)

    return Bridge(
        settings=settings,
        context_store=context_store,
        services=services,
        twilio_config=twilio_config,
        dialogue_provider="realtime" if dialogue_factory is not None else "none",
        _closables=[s for s in (synthesizer, secondary_synthesizer) if s is not None],
    )


def get_bridge(request: Request) -> Bridge:
    return request.app.state.bridge


def get_ws_bridge(websocket: WebSocket) -> Bridge:
    return websocket.app.state.bridge
