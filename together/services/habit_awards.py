from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together import ledger
from together.auth import Caller
from together.db_init import DAILY_STATUS_TABLE, HABITS_TABLE
from together.errors import CallableError, INVALID_ARGUMENT, NOT_FOUND, PERMISSION_DENIED
from together.repositories import HABIT_COLUMNS, daily_status_id, normalize_habit_row
from together.settings import get_settings
from together.timeutil import parse_day, timestamp_day, today as current_day, week_bounds
from together.transactions import run_transaction

logger = logging.getLogger(__name__)

WINDOW_WEEK = "week"
WINDOW_DAY = "day"

HABIT_COMPLETION_CATEGORY = "habit_completion"


def award_period(day: date, today: date, window: str) -> date:
    """First day of the period a habit star for ``day`` belongs to."""
    if window == WINDOW_DAY:
        return today
    return week_bounds(day)[0]


def award_key(habit_id: str, owner: str, window: str, period_start: date) -> str:
    return f"{habit_id}:{owner}:{window}:{period_start.isoformat()}"


async def _load_habit(session: AsyncSession, habit_id: str) -> dict | None:
    row = (await session.execute(
        sql_text(f"SELECT {HABIT_COLUMNS} FROM {HABITS_TABLE} WHERE id = :id"),
        {"id": habit_id},
    )).mappings().fetchone()
    return normalize_habit_row(row) if row else None


async def _week_statuses(session: AsyncSession, habit_id: str, owner: str, start: date, end: date) -> list[dict]:
    rows = (await session.execute(
        sql_text(
            f"""
            SELECT date, done FROM {DAILY_STATUS_TABLE}
            WHERE habit_id = :habit_id AND owner = :owner AND date BETWEEN :start_date AND :end_date
            """
        ),
        {"habit_id": habit_id, "owner": owner, "start_date": start.isoformat(), "end_date": end.isoformat()},
    )).mappings().all()
    return [{"date": row["date"], "done": bool(row["done"])} for row in rows]


async def _upsert_status(
    session: AsyncSession,
    habit_id: str,
    owner: str,
    partner_id: str | None,
    day_iso: str,
    done: bool,
    now: str,
) -> None:
    await session.execute(
        sql_text(
            f"""
            INSERT INTO {DAILY_STATUS_TABLE} (id, habit_id, owner, partner_id, date, done, created_at, updated_at)
            VALUES (:id, :habit_id, :owner, :partner_id, :date, :done, :now, :now)
            ON CONFLICT(habit_id, owner, date) DO UPDATE SET
                done = EXCLUDED.done,
                partner_id = EXCLUDED.partner_id,
                updated_at = EXCLUDED.updated_at
            """
        ),
        {
            "id": daily_status_id(habit_id, day_iso, owner),
            "habit_id": habit_id,
            "owner": owner,
            "partner_id": partner_id,
            "date": day_iso,
            "done": int(done),
            "now": now,
        },
    )


async def _write_award(session: AsyncSession, entry: dict) -> bool:
    inserted = await ledger.insert_ledger_entry(session, entry)
    if inserted:
        await ledger.increment_stars(session, entry["to_uid"], entry["amount"], awarded=True)
        logger.info("Habit star awarded to %s (%s)", entry["to_uid"], entry["award_key"])
    return inserted


async def _apply_status(
    session: AsyncSession, caller: Caller, habit_id: str, day: date, done: bool, today: date, now: str
) -> dict:
    habit = await _load_habit(session, habit_id)
    if not habit:
        raise CallableError(NOT_FOUND, "Habit not found")
    if habit["owner"] != caller.uid:
        raise CallableError(PERMISSION_DENIED, "Not authorized to update this habit")

    owner = habit["owner"]
    user = await ledger.load_user(session, owner)
    partner_id = (user or {}).get("partner_id")
    day_iso = day.isoformat()
    week_start, week_end = week_bounds(day)

    statuses = await _week_statuses(session, habit_id, owner, week_start, week_end)
    weekly_completions = sum(1 for item in statuses if item["done"] and item["date"] != day_iso)
    if done:
        weekly_completions += 1

    await _upsert_status(session, habit_id, owner, partner_id, day_iso, done, now)

    updates = {"updated_at": now}
    current_week_start = week_bounds(today)[0]
    in_current_week = week_start == current_week_start

    flag_set = habit["weekly_star_awarded"]
    awarded_day = timestamp_day(habit.get("weekly_star_awarded_at"))
    if flag_set and (awarded_day is None or week_bounds(awarded_day)[0] != current_week_start):
        flag_set = False
        updates["weekly_star_awarded"] = 0

    if day == today:
        updates["is_today_complete"] = int(done)
        updates["last_completed_at"] = now if done else None

    window = get_settings().award_dedup_window
    star_awarded = False
    weekly_goal = habit["weekly_goal"]
    if weekly_completions >= weekly_goal and not (window == WINDOW_WEEK and in_current_week and flag_set):
        key = award_key(habit_id, owner, window, award_period(day, today, window))
        star_awarded = await _write_award(
            session,
            {
                "from_uid": owner,
                "to_uid": owner,
                "owner": owner,
                "amount": 1,
                "type": ledger.HABIT_COMPLETION,
                "reason": f"Completed weekly goal for {habit['title']}",
                "category": HABIT_COMPLETION_CATEGORY,
                "status": "approved",
                "participants": ledger.participants_of(owner, partner_id),
                "habit_id": habit_id,
                "completed_count": weekly_completions,
                "week_start_date": week_start.isoformat(),
                "week_end_date": week_end.isoformat(),
                "award_key": key,
            },
        )
        if star_awarded and in_current_week:
            updates["weekly_star_awarded"] = 1
            updates["weekly_star_awarded_at"] = now

    assignments = ", ".join(f"{column} = :{column}" for column in updates)
    await session.execute(
        sql_text(f"UPDATE {HABITS_TABLE} SET {assignments} WHERE id = :id"),
        {**updates, "id": habit_id},
    )
    return {
        "habitId": habit_id,
        "date": day_iso,
        "done": done,
        "weeklyCompletions": weekly_completions,
        "weeklyGoal": weekly_goal,
        "starAwarded": star_awarded,
    }


def _parse_toggle_day(value) -> date:
    try:
        return parse_day(value)
    except (TypeError, ValueError) as exc:
        raise CallableError(INVALID_ARGUMENT, "Invalid date") from exc


def _stamp(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


async def handle_toggle_status(
    caller: Caller,
    habit_id: str,
    day,
    current_status: bool,
    *,
    today: date | None = None,
    now: datetime | None = None,
) -> dict:
    """Flip one day of a habit from ``current_status`` and evaluate the weekly star.

    Repeating the call with the same ``current_status`` leaves the same final
    state, and a star is written at most once per award period.
    """
    toggled_day = _parse_toggle_day(day)
    reference_day = today or current_day()
    stamp = _stamp(now)

    async def work(session: AsyncSession) -> dict:
        return await _apply_status(session, caller, habit_id, toggled_day, not current_status, reference_day, stamp)

    return await run_transaction(work)


async def toggle_daily_status(
    caller: Caller, habit_id: str, day, done: bool, *, today: date | None = None, now: datetime | None = None
) -> dict:
    toggled_day = _parse_toggle_day(day)
    reference_day = today or current_day()
    stamp = _stamp(now)

    async def work(session: AsyncSession) -> dict:
        return await _apply_status(session, caller, habit_id, toggled_day, done, reference_day, stamp)

    return await run_transaction(work)


async def award_weekly_star_if_eligible(
    habit_id: str,
    user_id: str,
    partner_id: str | None,
    weekly_goal: int,
    habit_title: str,
    daily_status: list[dict],
    *,
    today: date | None = None,
    window: str | None = None,
) -> bool:
    """Award one star when ``daily_status`` holds at least ``weekly_goal`` done days.

    The ledger row and the balance increment are written in one transaction,
    keyed by the same award key the toggle path uses. Returns True only when
    this call wrote the star.
    """
    completed = sum(1 for item in daily_status if item.get("done"))
    if completed < int(weekly_goal):
        return False

    reference_day = today or current_day()
    window = window or get_settings().award_dedup_window
    week_start, week_end = week_bounds(reference_day)
    key = award_key(habit_id, user_id, window, award_period(reference_day, reference_day, window))

    async def work(session: AsyncSession) -> bool:
        return await _write_award(
            session,
            {
                "from_uid": ledger.SYSTEM_SENDER,
                "to_uid": user_id,
                "owner": user_id,
                "amount": 1,
                "type": ledger.HABIT_COMPLETION,
                "reason": f"Completed goal ({weekly_goal} completions) for habit: {habit_title}",
                "category": HABIT_COMPLETION_CATEGORY,
                "status": "approved",
                "participants": ledger.participants_of(user_id, partner_id),
                "habit_id": habit_id,
                "completed_count": completed,
                "week_start_date": week_start.isoformat(),
                "week_end_date": week_end.isoformat(),
                "award_key": key,
            },
        )

    return await run_transaction(work)
