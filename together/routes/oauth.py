from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from together.auth import Caller, require_caller
from together.settings import get_settings
from together.services import google_calendar_service

router = APIRouter()


@router.get("/v1/oauth/google/connect")
async def google_connect(caller: Caller = Depends(require_caller)):
    settings = get_settings()
    if not settings.calendar_client_id:
        raise HTTPException(status_code=400, detail="Calendar OAuth not configured")
    url = google_calendar_service.build_connect_url(caller.uid)
    return {"url": url}


@router.get("/v1/oauth/google/callback")
async def google_callback(code: str, state: str):
    uid = google_calendar_service.verify_state(state)
    if not uid:
        raise HTTPException(status_code=400, detail="Invalid state")
    await google_calendar_service.exchange_code_for_tokens(uid, code)
    return {"ok": True}
