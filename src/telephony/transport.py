"""Duplex text transport used by a call session."""

from __future__ import annotations

import logging
from typing import Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from calls.errors import TransportUnavailable

LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def receive_text(self) -> str:
        """Next inbound message; raises TransportUnavailable once closed."""
        ...

    async def send_text(self, text: str) -> None:
        """Send one message; raises TransportUnavailable when not open."""
        ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """Adapts a Starlette WebSocket to :class:`Transport`."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    @property
    def is_open(self) -> bool:
        return (
            self._ws.application_state == WebSocketState.CONNECTED
            and self._ws.client_state == WebSocketState.CONNECTED
        )

    async def receive_text(self) -> str:
        try:
            return await self._ws.receive_text()
        except WebSocketDisconnect as exc:
            raise TransportUnavailable(f"websocket disconnected ({exc.code})") from exc
        except RuntimeError as exc:
            # Starlette raises RuntimeError when receiving after disconnect.
            raise TransportUnavailable(str(exc)) from exc

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise TransportUnavailable()
        try:
            await self._ws.send_text(text)
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise TransportUnavailable(str(exc)) from exc

    async def close(self) -> None:
        if self._ws.application_state != WebSocketState.CONNECTED:
            return
        try:
            await self._ws.close()
        except RuntimeError as exc:
            LOGGER.debug("websocket close after disconnect: %s", exc)
