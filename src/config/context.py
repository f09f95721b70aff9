"""Immutable runtime context snapshots with TTL refresh.

Business settings and prompts can change while the service runs. Each call
session receives the snapshot that was current when the call started; a
refresh builds a new snapshot and swaps the reference, it never mutates the
old one.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any
from zoneinfo import ZoneInfo

from config.settings import Settings
from prompts.loader import render_prompt, render_template

LOGGER = logging.getLogger(__name__)

GREETINGS: dict[str, tuple[str, str, str, str]] = {
    "en": ("Good morning", "Good afternoon", "Good evening", "Hello"),
    "he": ("בוקר טוב", "צהריים טובים", "ערב טוב", "לילה טוב"),
}


def time_of_day_greeting(now: datetime, language: str = "en") -> str:
    morning, afternoon, evening, night = GREETINGS.get(language, GREETINGS["en"])
    hour = now.hour
    if 5 <= hour < 11:
        return morning
    if 11 <= hour < 17:
        return afternoon
    if 17 <= hour < 22:
        return evening
    return night


@dataclass(frozen=True, slots=True)
class RuntimeContext:
    """Read-only configuration view shared by every call started under it."""

    business: Mapping[str, str]
    prompts: Mapping[str, str]
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 0

    def setting(self, key: str, default: str = "") -> str:
        return self.business.get(key, default)

    @property
    def language(self) -> str:
        return self.setting("LANGUAGE", "en")

    @property
    def time_zone(self) -> ZoneInfo:
        return ZoneInfo(self.setting("TIME_ZONE", "UTC"))

    @property
    def voice(self) -> str | None:
        return self.setting("VOICE") or None

    @property
    def fallback_text(self) -> str:
        return self.setting("FALLBACK_TEXT")

    @property
    def apology_text(self) -> str:
        return self.setting("APOLOGY_TEXT")

    def opening_script(self, now: datetime | None = None) -> str:
        now = (now or datetime.now(timezone.utc)).astimezone(self.time_zone)
        values = {**self.business, "GREETING": time_of_day_greeting(now, self.language)}
        return render_template(self.setting("OPENING_SCRIPT"), values).strip()

    def system_instruction(self) -> str:
        base = render_prompt("system_instruction.txt", self.business)
        sections = [base.strip()]
        for key, text in self.prompts.items():
            if text.strip():
                sections.append(f"## {key}\n{text.strip()}")
        return "\n\n".join(sections)


def build_context(settings: Settings, overrides: Mapping[str, Any] | None = None) -> RuntimeContext:
    """Merge settings defaults with store overrides into a snapshot."""

    overrides = overrides or {}
    business = {
        "BUSINESS_NAME": settings.business_name,
        "OPENING_SCRIPT": settings.opening_script,
        "TIME_ZONE": settings.time_zone,
        "LANGUAGE": settings.default_language,
        "VOICE": settings.tts_voice or "",
        "FALLBACK_TEXT": settings.fallback_text,
        "APOLOGY_TEXT": settings.apology_text,
    }
    business.update({str(k).upper(): str(v) for k, v in (overrides.get("settings") or {}).items()})
    prompts = {str(k).upper(): str(v) for k, v in (overrides.get("prompts") or {}).items()}
    ZoneInfo(business["TIME_ZONE"])  # fail the load, not the first call

    return RuntimeContext(
        business=MappingProxyType(business),
        prompts=MappingProxyType(prompts),
    )


def _read_context_file(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Context file must hold a JSON object: {path}")
    for section in ("settings", "prompts"):
        if not isinstance(payload.get(section, {}), dict):
            raise ValueError(f"Context file section '{section}' must be an object")
    return payload


ContextLoader = Callable[[], Awaitable[RuntimeContext]]
ContextListener = Callable[[RuntimeContext], Awaitable[None]]


def build_context_loader(settings: Settings) -> ContextLoader:
    async def _load() -> RuntimeContext:
        overrides: dict[str, Any] = {}
        if settings.context_file is not None:
            overrides = await asyncio.to_thread(_read_context_file, settings.context_file)
        return build_context(settings, overrides)

    return _load


class ContextStore:
    """Holds the current :class:`RuntimeContext` and refreshes it on TTL expiry."""

    def __init__(
        self,
        loader: ContextLoader,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._current: RuntimeContext | None = None
        self._expires_at = 0.0
        self._version = 0
        self._lock = asyncio.Lock()
        self._listeners: list[ContextListener] = []

    @property
    def current(self) -> RuntimeContext | None:
        return self._current

    def subscribe(self, listener: ContextListener) -> None:
        self._listeners.append(listener)

    def _fresh(self) -> bool:
        return self._current is not None and self._clock() < self._expires_at

    async def get(self) -> RuntimeContext:
        if self._fresh():
            return self._current  # type: ignore[return-value]
        try:
            return await self.refresh()
        except Exception as exc:
            previous = self._current
            if previous is None:
                raise
            LOGGER.warning("Context refresh failed, keeping version %d: %s", previous.version, exc)
            self._expires_at = self._clock() + self._ttl
            return previous

    async def refresh(self, *, force: bool = False) -> RuntimeContext:
        async with self._lock:
            if not force and self._fresh():
                return self._current  # type: ignore[return-value]
            loaded = await self._loader()
            self._version += 1
            snapshot = dataclasses.replace(loaded, version=self._version)
            self._current = snapshot
            self._expires_at = self._clock() + self._ttl

        LOGGER.info(
            "Context version %d loaded (%d settings, %d prompts)",
            snapshot.version,
            len(snapshot.business),
            len(snapshot.prompts),
        )
        for listener in self._listeners:
            try:
                await listener(snapshot)
            except Exception as exc:
                LOGGER.exception("Context listener failed: %s", exc)
        return snapshot
