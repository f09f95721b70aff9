"""FastAPI routes exposing stored call records."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import CallRecordResponse
from db.repository import CallRecordRepository

LOGGER = logging.getLogger(__name__)

router = APIRouter()


def get_repository() -> CallRecordRepository:
    return CallRecordRepository()


@router.get("/calls/{call_sid}", response_model=CallRecordResponse)
async def get_call_record(
    call_sid: str,
    repo: CallRecordRepository = Depends(get_repository),
) -> CallRecordResponse:
    record = await repo.get(call_sid)
    if record is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return CallRecordResponse.model_validate(record)
