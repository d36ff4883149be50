from __future__ import annotations

from datetime import date, timedelta

from together import repositories
from together.auth import Caller
from together.errors import CallableError, NOT_FOUND, PERMISSION_DENIED
from together.services import habit_stats


async def load_habit(caller: Caller, habit_id: str, *, allow_partner: bool = False) -> dict:
    habit = await repositories.get_habit(habit_id)
    if not habit:
        raise CallableError(NOT_FOUND, "Habit not found")
    if habit["owner"] == caller.uid:
        return habit
    if allow_partner:
        user = await repositories.get_user(caller.uid)
        if user and user.get("partner_id") == habit["owner"]:
            return habit
    raise CallableError(PERMISSION_DENIED, "Not authorized to access this habit")


async def list_habits(caller: Caller, partner: bool = False) -> list[dict]:
    if not partner:
        return await repositories.list_habits(caller.uid)
    user = await repositories.get_user(caller.uid)
    partner_id = (user or {}).get("partner_id")
    if not partner_id:
        return []
    return await repositories.list_habits(partner_id)


async def delete_habit(caller: Caller, habit_id: str) -> None:
    await load_habit(caller, habit_id)
    await repositories.delete_habit(habit_id)


async def habit_stats_for(caller: Caller, habit_id: str, today: date) -> dict:
    habit = await load_habit(caller, habit_id, allow_partner=True)
    # Streaks span the whole history.
    statuses = await repositories.list_daily_statuses(habit_id, habit["owner"], None, today.isoformat())
    return {"habit_id": habit_id, **habit_stats.habit_stats(habit, statuses, today)}


async def weekly_progress_for(caller: Caller, today: date) -> dict:
    habits = await repositories.list_habits(caller.uid)
    start = today - timedelta(days=7)
    statuses_by_habit = {}
    for habit in habits:
        statuses_by_habit[habit["id"]] = await repositories.list_daily_statuses(
            habit["id"], caller.uid, start.isoformat(), (today + timedelta(days=7)).isoformat()
        )
    return habit_stats.weekly_progress(habits, statuses_by_habit, today)
