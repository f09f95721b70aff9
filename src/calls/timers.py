"""One-shot timers with cancel-on-supersede semantics."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)


class ScheduledTimer:
    """A named one-shot timer bound to the running event loop.

    Arming an armed timer supersedes the pending shot. Every arm or cancel
    bumps ``generation``; a callback receives the generation it was armed
    with so consumers can discard shots that were superseded after they were
    queued but before they were handled.
    """

    def __init__(self, name: str, callback: Callable[[int], None]) -> None:
        self.name = name
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self.generation = 0

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float) -> int:
        self.cancel()
        generation = self.generation
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, delay), self._fire, generation)
        return generation

    def cancel(self) -> bool:
        self.generation += 1
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _fire(self, generation: int) -> None:
        self._handle = None
        try:
            self._callback(generation)
        except Exception as exc:
            LOGGER.exception("Timer %s callback failed: %s", self.name, exc)


class TimerGroup:
    """Owns every timer of one call so terminal events can clear them at once."""

    def __init__(self) -> None:
        self._timers: dict[str, ScheduledTimer] = {}

    def create(self, name: str, callback: Callable[[int], None]) -> ScheduledTimer:
        if name in self._timers:
            raise ValueError(f"Timer already registered: {name}")
        timer = ScheduledTimer(name, callback)
        self._timers[name] = timer
        return timer

    def __getitem__(self, name: str) -> ScheduledTimer:
        return self._timers[name]

    def armed(self) -> list[str]:
        return [name for name, timer in self._timers.items() if timer.armed]

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
