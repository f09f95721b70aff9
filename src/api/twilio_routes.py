"""Twilio Voice integration.

This module provides:
- Voice webhook answering with TwiML that connects the call to a Media Stream.
- The Media Stream WebSocket, one :class:`CallSession` per connection.
- Call status callbacks (logged only).
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import Bridge, get_bridge, get_ws_bridge
from calls.session import CallSession
from telephony.transport import WebSocketTransport

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

_ATTR_ENTITIES = {'"': "&quot;"}


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request, bridge: Bridge) -> str:
    if bridge.settings.public_base_url:
        base = bridge.settings.public_base_url.rstrip("/")
    else:
        # Request host; behind a proxy prefer PUBLIC_BASE_URL.
        base = str(request.base_url).rstrip("/")
    return _to_ws_url(f"{base}/api/twilio/stream")


def twiml_connect_stream(*, stream_url: str, caller: str) -> str:
    stream = escape(stream_url, _ATTR_ENTITIES)
    caller_value = escape(caller, _ATTR_ENTITIES)
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{stream}\">"
        f"<Parameter name=\"caller\" value=\"{caller_value}\" />"
        "</Stream>"
        "</Connect>"
        "</Response>"
    )


@router.post("/voice")
async def twilio_voice_webhook(request: Request, bridge: Bridge = Depends(get_bridge)) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip() or "unknown"
    caller = str(form.get("From") or "").strip()
    LOGGER.info("Incoming call %s, connecting media stream", call_sid)
    return _twiml_response(twiml_connect_stream(stream_url=_stream_url(request, bridge), caller=caller))


@router.websocket("/stream")
async def twilio_media_stream(websocket: WebSocket, bridge: Bridge = Depends(get_ws_bridge)) -> None:
    await websocket.accept()
    context = await bridge.context_store.get()
    session = CallSession(WebSocketTransport(websocket), context, bridge.services)
    LOGGER.info("[%s] media stream connected (context v%d)", session.correlation_id, context.version)
    outcome = await session.run()
    if outcome is not None:
        LOGGER.info(
            "[%s] media stream closed: %s/%s",
            session.correlation_id,
            outcome.decision.kind.value,
            outcome.decision.reason.value,
        )


@router.post("/status")
async def twilio_status_callback(request: Request) -> Response:
    form = await request.form()
    LOGGER.info(
        "Call %s status %s (duration=%s)",
        form.get("CallSid") or "unknown",
        form.get("CallStatus") or "unknown",
        form.get("CallDuration") or "-",
    )
    return Response(status_code=204)
