from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from zoneinfo import ZoneInfoNotFoundError

import pytest

from config.context import ContextStore, build_context, build_context_loader, time_of_day_greeting
from config.settings import Settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, business_name="Levi Roofing", time_zone="UTC", **overrides)


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(5, "Good morning"), (10, "Good morning"), (11, "Good afternoon"), (17, "Good evening"), (22, "Hello"), (3, "Hello")],
)
def test_time_of_day_greeting(hour: int, expected: str) -> None:
    assert time_of_day_greeting(datetime(2026, 1, 1, hour, tzinfo=timezone.utc)) == expected


def test_opening_script_renders_greeting_and_business_name() -> None:
    context = build_context(_settings())

    text = context.opening_script(datetime(2026, 1, 1, 9, tzinfo=timezone.utc))

    assert text == "Good morning, you've reached Levi Roofing. May I have your name, please?"


def test_opening_script_uses_configured_time_zone() -> None:
    context = build_context(_settings(), {"settings": {"time_zone": "Asia/Jerusalem"}})

    # 20:30 UTC is 22:30 in Jerusalem during winter.
    assert context.opening_script(datetime(2026, 1, 1, 20, 30, tzinfo=timezone.utc)).startswith("Hello")


def test_system_instruction_appends_prompt_sections() -> None:
    context = build_context(_settings(), {"prompts": {"faq": "We work Sunday to Thursday."}})

    instruction = context.system_instruction()

    assert "receptionist of Levi Roofing" in instruction
    assert instruction.endswith("## FAQ\nWe work Sunday to Thursday.")


def test_snapshot_is_read_only() -> None:
    context = build_context(_settings())

    with pytest.raises(TypeError):
        context.business["BUSINESS_NAME"] = "Other"  # type: ignore[index]


def test_invalid_time_zone_fails_the_load() -> None:
    with pytest.raises(ZoneInfoNotFoundError):
        build_context(_settings(), {"settings": {"TIME_ZONE": "Mars/Olympus"}})


def test_store_serves_cached_snapshot_until_ttl_expires() -> None:
    loads = 0
    clock = FakeClock()

    async def loader():
        nonlocal loads
        loads += 1
        return build_context(_settings(), {"settings": {"BUSINESS_NAME": f"Shop {loads}"}})

    store = ContextStore(loader, ttl_seconds=60, clock=clock)

    async def scenario():
        first = await store.get()
        again = await store.get()
        clock.now = 61
        refreshed = await store.get()
        return first, again, refreshed

    first, again, refreshed = asyncio.run(scenario())

    assert first is again
    assert loads == 2
    assert (first.version, refreshed.version) == (1, 2)
    assert first.setting("BUSINESS_NAME") == "Shop 1"
    assert refreshed.setting("BUSINESS_NAME") == "Shop 2"


def test_failed_refresh_keeps_previous_snapshot() -> None:
    clock = FakeClock()
    fail = False

    async def loader():
        if fail:
            raise ValueError("store unreachable")
        return build_context(_settings())

    store = ContextStore(loader, ttl_seconds=10, clock=clock)

    async def scenario():
        nonlocal fail
        first = await store.get()
        fail = True
        clock.now = 11
        return first, await store.get()

    first, second = asyncio.run(scenario())

    assert second is first


def test_forced_refresh_notifies_listeners_and_isolates_their_errors() -> None:
    seen = []

    async def loader():
        return build_context(_settings())

    async def broken(context) -> None:
        raise RuntimeError("listener bug")

    async def recorder(context) -> None:
        seen.append(context.version)

    store = ContextStore(loader, ttl_seconds=600)
    store.subscribe(broken)
    store.subscribe(recorder)

    async def scenario():
        await store.get()
        await store.refresh(force=True)

    asyncio.run(scenario())

    assert seen == [1, 2]
    assert store.current.version == 2


def test_file_loader_reads_overrides(tmp_path) -> None:
    path = tmp_path / "context.json"
    path.write_text(
        json.dumps({"settings": {"BUSINESS_NAME": "Dana Dental"}, "prompts": {"hours": "9 to 5"}}),
        encoding="utf-8",
    )
    loader = build_context_loader(_settings(context_file=path))

    context = asyncio.run(loader())

    assert context.setting("BUSINESS_NAME") == "Dana Dental"
    assert dict(context.prompts) == {"HOURS": "9 to 5"}
