from __future__ import annotations

import asyncio

from calls.errors import TransportUnavailable
from telephony.g711 import ULAW_SILENCE
from telephony.pacer import AudioFramePacer


class RecordingSender:
    def __init__(self, *, fail_after: int | None = None) -> None:
        self.frames: list[tuple[str, bytes]] = []
        self._fail_after = fail_after

    async def __call__(self, stream_sid: str, frame: bytes) -> None:
        if self._fail_after is not None and len(self.frames) >= self._fail_after:
            raise TransportUnavailable("socket gone")
        self.frames.append((stream_sid, frame))


def _run(coro):
    return asyncio.run(coro)


def test_pacer_emits_fixed_size_frames_and_pads_tail_with_silence() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: True, frame_ms=20)
        pacer.bind("MZ1")
        pacer.enqueue(b"\x01" * 100)
        pacer.enqueue(b"\x02" * 300)
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await pacer.close()
        return sender, pacer

    sender, pacer = _run(scenario())

    assert [len(frame) for _, frame in sender.frames] == [160, 160, 160]
    assert all(sid == "MZ1" for sid, _ in sender.frames)
    joined = b"".join(frame for _, frame in sender.frames)
    assert joined[:100] == b"\x01" * 100
    assert joined[100:400] == b"\x02" * 300
    assert joined[400:] == bytes([ULAW_SILENCE]) * 80
    assert pacer.padding_bytes == 80
    assert pacer.bytes_emitted == pacer.bytes_enqueued + pacer.padding_bytes


def test_pacer_holds_audio_until_bound() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: True)
        pacer.enqueue(b"\x05" * 160)
        await asyncio.sleep(0.05)
        before = len(sender.frames)
        assert not pacer.running
        pacer.bind("MZ2")
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await pacer.close()
        return before, sender

    before, sender = _run(scenario())

    assert before == 0
    assert len(sender.frames) == 1


def test_pacer_tick_stops_when_buffer_empty_and_restarts_on_enqueue() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: True)
        pacer.bind("MZ3")
        pacer.enqueue(b"\x00" * 160)
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await asyncio.sleep(0.03)
        idle = pacer.running
        pacer.enqueue(b"\x00" * 160)
        restarted = pacer.running
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await pacer.close()
        return idle, restarted, sender

    idle, restarted, sender = _run(scenario())

    assert idle is False
    assert restarted is True
    assert len(sender.frames) == 2


def test_pacer_paces_frames_in_real_time() -> None:
    async def scenario():
        loop = asyncio.get_running_loop()
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: True, frame_ms=20)
        pacer.bind("MZ4")
        started = loop.time()
        pacer.enqueue(b"\x00" * 160 * 5)
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        elapsed = loop.time() - started
        await pacer.close()
        return elapsed

    # Five frames: first sent immediately, then four 20 ms intervals.
    assert _run(scenario()) >= 0.07


def test_pacer_drops_frames_when_channel_closed() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: False)
        pacer.bind("MZ5")
        pacer.enqueue(b"\x00" * 320)
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await pacer.close()
        return sender, pacer

    sender, pacer = _run(scenario())

    assert sender.frames == []
    assert pacer.frames_dropped == 2


def test_pacer_treats_transport_errors_as_drops() -> None:
    async def scenario():
        sender = RecordingSender(fail_after=1)
        pacer = AudioFramePacer(sender, is_open=lambda: True)
        pacer.bind("MZ6")
        pacer.enqueue(b"\x00" * 480)
        await asyncio.wait_for(pacer.wait_drained(), timeout=2)
        await pacer.close()
        return sender, pacer

    sender, pacer = _run(scenario())

    assert len(sender.frames) == 1
    assert pacer.frames_sent == 1
    assert pacer.frames_dropped == 2


def test_pacer_close_discards_pending_audio() -> None:
    async def scenario():
        sender = RecordingSender()
        pacer = AudioFramePacer(sender, is_open=lambda: True)
        pacer.bind("MZ7")
        pacer.enqueue(b"\x00" * 160 * 50)
        await asyncio.sleep(0.03)
        await pacer.close()
        sent = len(sender.frames)
        pacer.enqueue(b"\x00" * 160)
        await asyncio.sleep(0.03)
        return sent, sender, pacer

    sent, sender, pacer = _run(scenario())

    assert sent < 50
    assert len(sender.frames) == sent
    assert pacer.pending_bytes == 0
    assert not pacer.running
