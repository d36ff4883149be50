from __future__ import annotations

from datetime import date, timedelta

from together import repositories
from together.auth import Caller
from together.errors import CallableError, INVALID_ARGUMENT, NOT_FOUND, PERMISSION_DENIED
from together.timeutil import parse_day, week_bounds

REMINDER_BUCKETS = ["today", "tomorrow", "this_week", "this_month", "later"]


async def load_owned_reminder(caller: Caller, reminder_id: str) -> dict:
    reminder = await repositories.get_reminder(reminder_id)
    if not reminder:
        raise CallableError(NOT_FOUND, "Reminder not found")
    if reminder["owner"] != caller.uid:
        raise CallableError(PERMISSION_DENIED, "Not authorized to modify this reminder")
    return reminder


def _check_category(category: str | None) -> None:
    if category is not None and category not in repositories.REMINDER_CATEGORIES:
        raise CallableError(INVALID_ARGUMENT, f"Unknown reminder category: {category}")


def _check_date(value) -> None:
    try:
        parse_day(value)
    except (TypeError, ValueError) as exc:
        raise CallableError(INVALID_ARGUMENT, "Invalid reminder date") from exc


async def toggle_reminder(caller: Caller, reminder_id: str, completed: bool) -> dict:
    await load_owned_reminder(caller, reminder_id)
    await repositories.update_reminder(reminder_id, {"completed": completed})
    return {"success": True}


async def create_reminder(caller: Caller, payload: dict) -> dict:
    title = str(payload.get("title") or "").strip()
    if not title or not payload.get("date"):
        raise CallableError(INVALID_ARGUMENT, "title and date are required")
    _check_date(payload["date"])
    _check_category(payload.get("category"))
    reminder = await repositories.create_reminder(caller.uid, {**payload, "title": title})
    return {"success": True, "id": reminder["id"]}


async def update_reminder(caller: Caller, reminder_id: str, patch: dict) -> dict:
    await load_owned_reminder(caller, reminder_id)
    if patch.get("date") is not None:
        _check_date(patch["date"])
    _check_category(patch.get("category"))
    await repositories.update_reminder(reminder_id, patch)
    return {"success": True}


async def delete_reminder(caller: Caller, reminder_id: str) -> dict:
    await load_owned_reminder(caller, reminder_id)
    await repositories.delete_reminder(reminder_id)
    return {"success": True}


async def list_visible_reminders(caller: Caller, partner: bool = False) -> list[dict]:
    if not partner:
        return await repositories.list_reminders(caller.uid)
    user = await repositories.get_user(caller.uid)
    partner_id = (user or {}).get("partner_id")
    if not partner_id:
        return []
    return await repositories.list_reminders(partner_id)


def group_reminders_by_date(reminders: list[dict], today: date) -> dict:
    groups = {bucket: [] for bucket in REMINDER_BUCKETS}
    week_start, week_end = week_bounds(today)
    for reminder in reminders:
        try:
            day = parse_day(reminder.get("date"))
        except ValueError:
            groups["later"].append(reminder)
            continue
        if day == today:
            groups["today"].append(reminder)
        elif day == today + timedelta(days=1):
            groups["tomorrow"].append(reminder)
        elif week_start <= day <= week_end:
            groups["this_week"].append(reminder)
        elif (day.year, day.month) == (today.year, today.month):
            groups["this_month"].append(reminder)
        else:
            groups["later"].append(reminder)
    return groups
