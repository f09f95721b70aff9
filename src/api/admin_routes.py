"""Operational endpoints: health, context reload and recording proxy."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Annotated

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Response

from api.dependencies import Bridge, get_bridge
from api.schemas import HealthResponse, ReloadResponse

LOGGER = logging.getLogger(__name__)

router = APIRouter()


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
        yield client


@router.get("/health", response_model=HealthResponse)
async def health(bridge: Bridge = Depends(get_bridge)) -> HealthResponse:
    return HealthResponse(
        service=bridge.settings.service_name,
        dialogue_provider=bridge.dialogue_provider,
        time=datetime.now(timezone.utc),
    )


@router.post("/admin/reload", response_model=ReloadResponse)
async def reload_context(
    x_admin_secret: Annotated[str | None, Header()] = None,
    bridge: Bridge = Depends(get_bridge),
) -> ReloadResponse:
    expected = bridge.settings.admin_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Admin reload not configured")
    if not x_admin_secret or not secrets.compare_digest(x_admin_secret, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

    started = time.perf_counter()
    try:
        context = await bridge.context_store.refresh(force=True)
    except Exception as exc:
        LOGGER.exception("Forced context reload failed: %s", exc)
        raise HTTPException(status_code=500, detail="Context reload failed") from exc
    elapsed_ms = round((time.perf_counter() - started) * 1000)
    LOGGER.info("Context reloaded by admin request in %d ms (v%d)", elapsed_ms, context.version)
    return ReloadResponse(
        version=context.version,
        elapsed_ms=elapsed_ms,
        settings_keys=sorted(context.business),
        prompts_keys=sorted(context.prompts),
    )


@router.get("/recordings/{recording_sid}.mp3")
async def recording_proxy(
    recording_sid: str,
    bridge: Bridge = Depends(get_bridge),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    cfg = bridge.twilio_config
    if cfg is None:
        raise HTTPException(status_code=404, detail="Recordings not available")

    try:
        upstream = await client.get(
            cfg.recording_media_url(recording_sid),
            auth=(cfg.account_sid, cfg.auth_token),
        )
    except httpx.HTTPError as exc:
        LOGGER.warning("Recording %s fetch failed: %s", recording_sid, exc)
        raise HTTPException(status_code=502, detail="Recording fetch failed") from exc

    if upstream.status_code == 404:
        raise HTTPException(status_code=404, detail="Recording not found")
    if upstream.status_code >= 400:
        LOGGER.warning("Recording %s fetch returned %s", recording_sid, upstream.status_code)
        raise HTTPException(status_code=502, detail="Recording fetch failed")

    return Response(
        content=upstream.content,
        media_type="audio/mpeg",
        headers={"Content-Disposition": f'inline; filename="{recording_sid}.mp3"'},
    )
