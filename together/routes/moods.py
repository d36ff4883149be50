from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from together import repositories
from together.auth import Caller, require_caller
from together.schemas import MoodPayload
from together.services import moods
from together.services.partners import require_partner
from together.timeutil import today

router = APIRouter()


async def _mood_owner(caller: Caller, partner: bool) -> str:
    if not partner:
        return caller.uid
    return require_partner(await repositories.get_user(caller.uid))


@router.get("/v1/moods/types")
async def mood_types():
    return {"items": moods.MOOD_TYPES}


@router.put("/v1/moods")
async def set_mood(payload: MoodPayload, caller: Caller = Depends(require_caller)):
    return await moods.set_mood(caller, payload.mood, payload.day or today(), payload.note)


@router.get("/v1/moods")
async def list_moods(
    limit: int = Query(30, ge=1, le=365),
    before: date | None = Query(None),
    partner: bool = Query(False),
    caller: Caller = Depends(require_caller),
):
    owner = await _mood_owner(caller, partner)
    items = await repositories.list_moods(owner, limit=limit, before_iso=before.isoformat() if before else None)
    next_before = items[-1]["date"] if len(items) == limit else None
    return {"items": items, "next_before": next_before}


@router.get("/v1/moods/distribution")
async def mood_distribution(
    start: date | None = Query(None),
    end: date | None = Query(None),
    partner: bool = Query(False),
    caller: Caller = Depends(require_caller),
):
    owner = await _mood_owner(caller, partner)
    end = end or today()
    start = start or end - timedelta(days=30)
    items = await repositories.list_moods_range(owner, start.isoformat(), end.isoformat())
    return {"start": start.isoformat(), "end": end.isoformat(), "items": moods.mood_distribution(items)}
