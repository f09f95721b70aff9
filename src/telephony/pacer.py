"""Fixed-cadence frame pacing for synthesized audio.

Synthesis collaborators deliver audio in bursts of arbitrary size. Twilio
expects one 20 ms mu-law frame per message in real time, so the pacer
buffers bytes and emits exactly one frame per tick.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from calls.errors import TransportUnavailable
from telephony.g711 import ULAW_SILENCE, frame_bytes

LOGGER = logging.getLogger(__name__)

FrameSender = Callable[[str, bytes], Awaitable[None]]


class AudioFramePacer:
    """FIFO byte queue drained one frame per tick.

    The tick runs only while there is something to send; ``enqueue`` restarts
    it. A trailing partial frame is padded with mu-law silence.
    """

    def __init__(
        self,
        send: FrameSender,
        *,
        is_open: Callable[[], bool],
        frame_ms: int = 20,
        call_id: str = "-",
    ) -> None:
        self._send = send
        self._is_open = is_open
        self._frame_size = frame_bytes(frame_ms)
        self._interval = frame_ms / 1000.0
        self._call_id = call_id
        self._buffer = bytearray()
        self._stream_sid: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = False

        self.bytes_enqueued = 0
        self.bytes_emitted = 0
        self.padding_bytes = 0
        self.frames_sent = 0
        self.frames_dropped = 0

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def bound(self) -> bool:
        return self._stream_sid is not None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def bind(self, stream_sid: str) -> None:
        self._stream_sid = stream_sid
        if self._buffer:
            self._ensure_running()

    def enqueue(self, chunk: bytes) -> None:
        if self._closed:
            LOGGER.debug("[%s] pacer closed, discarding %d bytes", self._call_id, len(chunk))
            return
        if not chunk:
            return
        self._buffer.extend(chunk)
        self.bytes_enqueued += len(chunk)
        self._drained.clear()
        if self.bound:
            self._ensure_running()

    async def wait_drained(self) -> None:
        await self._drained.wait()

    async def close(self) -> None:
        self._closed = True
        self._buffer.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._drained.set()

    def _ensure_running(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"pacer-{self._call_id}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while self._buffer and not self._closed:
                await self._emit(self._pop_frame())
                deadline += self._interval
                delay = deadline - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                else:
                    deadline = loop.time()
        finally:
            if not self._buffer:
                self._drained.set()

    def _pop_frame(self) -> bytes:
        frame = bytes(self._buffer[: self._frame_size])
        del self._buffer[: self._frame_size]
        missing = self._frame_size - len(frame)
        if missing:
            frame += bytes([ULAW_SILENCE]) * missing
            self.padding_bytes += missing
        return frame

    async def _emit(self, frame: bytes) -> None:
        stream_sid = self._stream_sid
        if stream_sid is None or not self._is_open():
            self._drop("output channel not open")
            return
        try:
            await self._send(stream_sid, frame)
        except TransportUnavailable as exc:
            self._drop(exc.detail)
            return
        self.frames_sent += 1
        self.bytes_emitted += len(frame)

    def _drop(self, reason: str) -> None:
        self.frames_dropped += 1
        if self.frames_dropped == 1:
            LOGGER.warning("[%s] dropping outbound frame: %s", self._call_id, reason)
        else:
            LOGGER.debug("[%s] dropping outbound frame: %s", self._call_id, reason)
