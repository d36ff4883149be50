from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from together.auth import Caller, require_caller
from together.services import reminders
from together.timeutil import today

router = APIRouter()


@router.get("/v1/reminders")
async def list_reminders(
    partner: bool = Query(False),
    grouped: bool = Query(False),
    caller: Caller = Depends(require_caller),
):
    items = await reminders.list_visible_reminders(caller, partner=partner)
    if grouped:
        return {"groups": reminders.group_reminders_by_date(items, today())}
    return {"items": items}
