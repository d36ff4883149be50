from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from together import repositories
from together.auth import Caller, require_caller
from together.services import stars

router = APIRouter()


@router.get("/v1/stars/balance")
async def get_balance(caller: Caller = Depends(require_caller)):
    return {"stars": await stars.get_balance(caller.uid)}


@router.get("/v1/stars/ledger")
async def list_ledger(limit: int = Query(10, ge=1, le=200), caller: Caller = Depends(require_caller)):
    items = await repositories.list_ledger(caller.uid, limit=limit)
    return {"items": items, "summary": stars.summarize_ledger(caller.uid, items)}
