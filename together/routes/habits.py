from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from together import repositories
from together.auth import Caller, require_caller
from together.schemas import HabitCreate, HabitPatch, HabitToggle, StatusNote
from together.services import habit_awards, habits
from together.timeutil import today, week_bounds

router = APIRouter()


@router.get("/v1/habits")
async def list_habits(partner: bool = Query(False), caller: Caller = Depends(require_caller)):
    return {"items": await habits.list_habits(caller, partner=partner)}


@router.post("/v1/habits")
async def create_habit(payload: HabitCreate, caller: Caller = Depends(require_caller)):
    return await repositories.create_habit(caller.uid, payload.model_dump())


@router.get("/v1/habits/progress/week")
async def weekly_progress(caller: Caller = Depends(require_caller)):
    return await habits.weekly_progress_for(caller, today())


@router.patch("/v1/habits/{habit_id}")
async def update_habit(habit_id: str, payload: HabitPatch, caller: Caller = Depends(require_caller)):
    await habits.load_habit(caller, habit_id)
    return await repositories.update_habit(habit_id, payload.model_dump(exclude_none=True))


@router.delete("/v1/habits/{habit_id}")
async def delete_habit(habit_id: str, caller: Caller = Depends(require_caller)):
    await habits.delete_habit(caller, habit_id)
    return {"ok": True}


@router.get("/v1/habits/{habit_id}/statuses")
async def list_statuses(
    habit_id: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    caller: Caller = Depends(require_caller),
):
    habit = await habits.load_habit(caller, habit_id, allow_partner=True)
    if start is None and end is None:
        start, end = week_bounds(today())
    items = await repositories.list_daily_statuses(
        habit_id,
        habit["owner"],
        start.isoformat() if start else None,
        end.isoformat() if end else None,
    )
    return {"items": items}


@router.post("/v1/habits/{habit_id}/toggle")
async def toggle_status(habit_id: str, payload: HabitToggle, caller: Caller = Depends(require_caller)):
    return await habit_awards.handle_toggle_status(caller, habit_id, payload.day, payload.current_status)


@router.put("/v1/habits/{habit_id}/statuses/{day}/note")
async def set_note(habit_id: str, day: date, payload: StatusNote, caller: Caller = Depends(require_caller)):
    await habits.load_habit(caller, habit_id)
    user = await repositories.get_user(caller.uid)
    return await repositories.set_status_note(
        habit_id, caller.uid, day.isoformat(), payload.notes, (user or {}).get("partner_id")
    )


@router.get("/v1/habits/{habit_id}/stats")
async def habit_stats(habit_id: str, caller: Caller = Depends(require_caller)):
    return await habits.habit_stats_for(caller, habit_id, today())
