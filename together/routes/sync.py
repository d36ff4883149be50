from __future__ import annotations

from fastapi import APIRouter, Depends

from together import repositories
from together.auth import Caller, require_caller
from together.workers.sync_worker import process_outbox_once

router = APIRouter()


@router.get("/v1/sync/status")
async def sync_status(caller: Caller = Depends(require_caller)):
    token = await repositories.get_google_tokens(caller.uid)
    cursor = await repositories.get_sync_cursor(caller.uid, "primary")
    return {
        "connected": bool(token),
        "last_synced_at": cursor.get("last_synced_at") if cursor else None,
        "last_error": cursor.get("last_error") if cursor else None,
    }


@router.post("/v1/sync/run")
async def run_sync_once(caller: Caller = Depends(require_caller)):
    drained = await process_outbox_once(limit=25)
    return {"ok": True, "outbox_drained": drained}
