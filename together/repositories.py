from __future__ import annotations

import json
from uuid import uuid4

from sqlalchemy import text as sql_text

from together.db import get_sessionmaker
from together.db_init import (
    ADMINS_TABLE,
    CALENDAR_EVENTS_TABLE,
    COUPONS_TABLE,
    DAILY_STATUS_TABLE,
    GOOGLE_TOKENS_TABLE,
    HABITS_TABLE,
    LEDGER_TABLE,
    MESSAGES_TABLE,
    MOODS_TABLE,
    REMINDERS_TABLE,
    SYNC_CURSOR_TABLE,
    SYNC_OUTBOX_TABLE,
    USERS_TABLE,
)
from together.timeutil import now_iso

USER_MODE_SOLO = "SOLO"
USER_MODE_PARTNER = "PARTNER"

DEFAULT_USER_SETTINGS = {
    "mode": USER_MODE_SOLO,
    "notifications": True,
    "emailNotifications": True,
    "calendarSync": False,
}

DEFAULT_WEEKLY_GOAL = 7

REMINDER_CATEGORIES = ["personal", "work", "health", "shopping", "social", "other"]

USER_COLUMNS = (
    "uid, email, display_name, stars, partner_id, settings_json, last_star_awarded_at, created_at, updated_at, "
    "deleted_at"
)
HABIT_COLUMNS = (
    "id, owner, title, description, weekly_goal, weekly_star_awarded, weekly_star_awarded_at, "
    "is_today_complete, last_completed_at, created_at, updated_at"
)
STATUS_COLUMNS = "id, habit_id, owner, partner_id, date, done, notes, created_at, updated_at"
LEDGER_COLUMNS = (
    "id, from_uid, to_uid, owner, amount, type, reason, category, participants_json, status, habit_id, "
    "completed_count, week_start_date, week_end_date, coupon_id, award_key, created_at"
)
REMINDER_COLUMNS = "id, owner, title, description, category, date, completed, participants_json, created_at, updated_at"
COUPON_COLUMNS = (
    "id, title, description, star_cost, color, from_user, for_user, used, redeemed_at, created_at, updated_at"
)
EVENT_COLUMNS = (
    "id, owner, title, description, start_at, end_at, all_day, source, google_calendar_id, google_event_id, "
    "created_at, updated_at"
)


def new_id() -> str:
    return uuid4().hex


def daily_status_id(habit_id: str, day_iso: str, owner: str) -> str:
    return f"{habit_id}_{day_iso}_{owner}"


def _as_bools(payload: dict, keys) -> dict:
    for key in keys:
        if key in payload:
            payload[key] = bool(payload[key])
    return payload


def _decode_json(raw, default):
    if not raw:
        return default
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return decoded if isinstance(decoded, type(default)) else default


def normalize_user_row(row) -> dict:
    if not row:
        return {}
    payload = dict(row)
    try:
        payload["stars"] = int(payload.get("stars") or 0)
    except (TypeError, ValueError):
        payload["stars"] = 0
    settings = dict(DEFAULT_USER_SETTINGS)
    settings.update(_decode_json(payload.pop("settings_json", None), {}))
    payload["settings"] = settings
    return payload


def normalize_habit_row(row) -> dict:
    if not row:
        return {}
    payload = _as_bools(dict(row), ("weekly_star_awarded", "is_today_complete"))
    payload["weekly_goal"] = int(payload.get("weekly_goal") or DEFAULT_WEEKLY_GOAL)
    return payload


def normalize_status_row(row) -> dict:
    if not row:
        return {}
    return _as_bools(dict(row), ("done",))


def normalize_ledger_row(row) -> dict:
    if not row:
        return {}
    payload = dict(row)
    payload["participants"] = _decode_json(payload.pop("participants_json", None), [])
    return payload


def normalize_reminder_row(row) -> dict:
    if not row:
        return {}
    payload = _as_bools(dict(row), ("completed",))
    payload["participants"] = _decode_json(payload.pop("participants_json", None), [])
    return payload


def normalize_coupon_row(row) -> dict:
    if not row:
        return {}
    return _as_bools(dict(row), ("used",))


def normalize_event_row(row) -> dict:
    if not row:
        return {}
    return _as_bools(dict(row), ("all_day",))


# Users


async def get_user(uid: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {USER_COLUMNS} FROM {USERS_TABLE} WHERE uid = :uid"),
            {"uid": uid},
        )).mappings().fetchone()
    return normalize_user_row(row) if row else None


async def upsert_user(uid: str, email: str, display_name: str | None = None) -> dict:
    now = now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {USERS_TABLE} (uid, email, display_name, stars, settings_json, created_at, updated_at)
                VALUES (:uid, :email, :display_name, 0, :settings_json, :now, :now)
                ON CONFLICT(uid) DO UPDATE SET
                    email = EXCLUDED.email,
                    display_name = COALESCE(EXCLUDED.display_name, {USERS_TABLE}.display_name),
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "uid": uid,
                "email": str(email or "").strip().lower(),
                "display_name": display_name,
                "settings_json": json.dumps(DEFAULT_USER_SETTINGS),
                "now": now,
            },
        )
        await session.commit()
    return await get_user(uid)


async def update_user_settings(uid: str, patch: dict) -> dict:
    user = await get_user(uid)
    if not user:
        return {}
    settings = dict(user["settings"])
    settings.update({key: value for key, value in (patch or {}).items() if key != "mode"})
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"UPDATE {USERS_TABLE} SET settings_json = :settings_json, updated_at = :now WHERE uid = :uid"),
            {"uid": uid, "settings_json": json.dumps(settings), "now": now_iso()},
        )
        await session.commit()
    return settings


async def is_admin(uid: str) -> bool:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT uid FROM {ADMINS_TABLE} WHERE uid = :uid"),
            {"uid": uid},
        )).fetchone()
    return row is not None


async def set_admin(uid: str, enabled: bool, granted_by: str | None = None) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        if enabled:
            await session.execute(
                sql_text(
                    f"INSERT INTO {ADMINS_TABLE} (uid, granted_by, created_at) VALUES (:uid, :granted_by, :now) "
                    "ON CONFLICT(uid) DO NOTHING"
                ),
                {"uid": uid, "granted_by": granted_by, "now": now_iso()},
            )
        else:
            await session.execute(sql_text(f"DELETE FROM {ADMINS_TABLE} WHERE uid = :uid"), {"uid": uid})
        await session.commit()


# Habits


async def create_habit(owner: str, payload: dict) -> dict:
    now = now_iso()
    record = {
        "id": new_id(),
        "owner": owner,
        "title": str(payload.get("title") or "").strip(),
        "description": str(payload.get("description") or "").strip(),
        "weekly_goal": int(payload.get("weekly_goal") or DEFAULT_WEEKLY_GOAL),
        "weekly_star_awarded": 0,
        "weekly_star_awarded_at": None,
        "is_today_complete": 0,
        "last_completed_at": None,
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {HABITS_TABLE} ({HABIT_COLUMNS})
                VALUES (:id, :owner, :title, :description, :weekly_goal, :weekly_star_awarded,
                        :weekly_star_awarded_at, :is_today_complete, :last_completed_at, :created_at, :updated_at)
                """
            ),
            record,
        )
        await session.commit()
    return normalize_habit_row(record)


async def get_habit(habit_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {HABIT_COLUMNS} FROM {HABITS_TABLE} WHERE id = :id"),
            {"id": habit_id},
        )).mappings().fetchone()
    return normalize_habit_row(row) if row else None


async def list_habits(owner: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT {HABIT_COLUMNS} FROM {HABITS_TABLE} WHERE owner = :owner ORDER BY created_at"),
            {"owner": owner},
        )).mappings().all()
    return [normalize_habit_row(row) for row in rows]


async def update_habit(habit_id: str, patch: dict) -> dict | None:
    allowed = {"title", "description", "weekly_goal"}
    updates = []
    params = {"id": habit_id}
    for key, value in patch.items():
        if key not in allowed or value is None:
            continue
        updates.append(f"{key} = :{key}")
        params[key] = int(value) if key == "weekly_goal" else str(value).strip()
    if updates:
        updates.append("updated_at = :updated_at")
        params["updated_at"] = now_iso()
        session_factory = get_sessionmaker()
        async with session_factory() as session:
            await session.execute(
                sql_text(f"UPDATE {HABITS_TABLE} SET {', '.join(updates)} WHERE id = :id"),
                params,
            )
            await session.commit()
    return await get_habit(habit_id)


async def delete_habit(habit_id: str) -> None:
    # Ledger entries referencing the habit are kept.
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"DELETE FROM {DAILY_STATUS_TABLE} WHERE habit_id = :habit_id"),
            {"habit_id": habit_id},
        )
        await session.execute(sql_text(f"DELETE FROM {HABITS_TABLE} WHERE id = :id"), {"id": habit_id})
        await session.commit()


async def list_daily_statuses(habit_id: str, owner: str, start_iso: str | None = None, end_iso: str | None = None) -> list[dict]:
    clauses = ["habit_id = :habit_id", "owner = :owner"]
    params = {"habit_id": habit_id, "owner": owner}
    if start_iso:
        clauses.append("date >= :start_date")
        params["start_date"] = start_iso
    if end_iso:
        clauses.append("date <= :end_date")
        params["end_date"] = end_iso
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"SELECT {STATUS_COLUMNS} FROM {DAILY_STATUS_TABLE} WHERE {' AND '.join(clauses)} ORDER BY date"
            ),
            params,
        )).mappings().all()
    return [normalize_status_row(row) for row in rows]


async def count_daily_statuses(habit_id: str, owner: str, day_iso: str) -> int:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        count = (await session.execute(
            sql_text(
                f"SELECT COUNT(*) FROM {DAILY_STATUS_TABLE} "
                "WHERE habit_id = :habit_id AND owner = :owner AND date = :date"
            ),
            {"habit_id": habit_id, "owner": owner, "date": day_iso},
        )).scalar_one()
    return int(count or 0)


async def set_status_note(habit_id: str, owner: str, day_iso: str, notes: str, partner_id: str | None = None) -> dict:
    now = now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {DAILY_STATUS_TABLE} (id, habit_id, owner, partner_id, date, done, notes, created_at, updated_at)
                VALUES (:id, :habit_id, :owner, :partner_id, :date, 0, :notes, :now, :now)
                ON CONFLICT(habit_id, owner, date) DO UPDATE SET notes = EXCLUDED.notes, updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "id": daily_status_id(habit_id, day_iso, owner),
                "habit_id": habit_id,
                "owner": owner,
                "partner_id": partner_id,
                "date": day_iso,
                "notes": notes,
                "now": now,
            },
        )
        await session.commit()
        row = (await session.execute(
            sql_text(
                f"SELECT {STATUS_COLUMNS} FROM {DAILY_STATUS_TABLE} "
                "WHERE habit_id = :habit_id AND owner = :owner AND date = :date"
            ),
            {"habit_id": habit_id, "owner": owner, "date": day_iso},
        )).mappings().fetchone()
    return normalize_status_row(row)


# Ledger (reads only; writes go through together.ledger inside a transaction)


async def list_ledger(uid: str, limit: int = 10) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {LEDGER_COLUMNS}
                FROM {LEDGER_TABLE}
                WHERE participants_json LIKE :needle
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            {"needle": f'%"{uid}"%', "limit": limit},
        )).mappings().all()
    return [normalize_ledger_row(row) for row in rows]


async def list_habit_awards(habit_id: str, to_uid: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {LEDGER_COLUMNS}
                FROM {LEDGER_TABLE}
                WHERE habit_id = :habit_id AND to_uid = :to_uid AND type = 'HABIT_COMPLETION'
                ORDER BY created_at
                """
            ),
            {"habit_id": habit_id, "to_uid": to_uid},
        )).mappings().all()
    return [normalize_ledger_row(row) for row in rows]


async def count_ledger_entries() -> int:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        count = (await session.execute(sql_text(f"SELECT COUNT(*) FROM {LEDGER_TABLE}"))).scalar_one()
    return int(count or 0)


# Reminders


async def create_reminder(owner: str, payload: dict) -> dict:
    now = now_iso()
    record = {
        "id": new_id(),
        "owner": owner,
        "title": str(payload.get("title") or "").strip(),
        "description": str(payload.get("description") or "").strip(),
        "category": payload.get("category") or "personal",
        "date": payload.get("date"),
        "completed": 0,
        "participants_json": json.dumps([owner]),
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {REMINDERS_TABLE} ({REMINDER_COLUMNS})
                VALUES (:id, :owner, :title, :description, :category, :date, :completed,
                        :participants_json, :created_at, :updated_at)
                """
            ),
            record,
        )
        await session.commit()
    return normalize_reminder_row(record)


async def get_reminder(reminder_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {REMINDER_COLUMNS} FROM {REMINDERS_TABLE} WHERE id = :id"),
            {"id": reminder_id},
        )).mappings().fetchone()
    return normalize_reminder_row(row) if row else None


async def update_reminder(reminder_id: str, patch: dict) -> None:
    allowed = {"title", "description", "category", "date", "completed"}
    updates = ["updated_at = :updated_at"]
    params = {"id": reminder_id, "updated_at": now_iso()}
    for key, value in patch.items():
        if key not in allowed or value is None:
            continue
        updates.append(f"{key} = :{key}")
        if key == "completed":
            params[key] = int(bool(value))
        elif key in {"title", "description"}:
            params[key] = str(value).strip()
        else:
            params[key] = value
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"UPDATE {REMINDERS_TABLE} SET {', '.join(updates)} WHERE id = :id"),
            params,
        )
        await session.commit()


async def delete_reminder(reminder_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(sql_text(f"DELETE FROM {REMINDERS_TABLE} WHERE id = :id"), {"id": reminder_id})
        await session.commit()


async def list_reminders(owner: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(f"SELECT {REMINDER_COLUMNS} FROM {REMINDERS_TABLE} WHERE owner = :owner ORDER BY date, created_at"),
            {"owner": owner},
        )).mappings().all()
    return [normalize_reminder_row(row) for row in rows]


# Moods


async def upsert_mood(user_id: str, day_iso: str, mood: str, note: str | None = None) -> dict:
    now = now_iso()
    record_id = f"{user_id}_{day_iso}"
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {MOODS_TABLE} (id, user_id, date, mood, note, created_at, updated_at)
                VALUES (:id, :user_id, :date, :mood, :note, :now, :now)
                ON CONFLICT(id) DO UPDATE SET
                    mood = EXCLUDED.mood,
                    note = EXCLUDED.note,
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {"id": record_id, "user_id": user_id, "date": day_iso, "mood": mood, "note": note, "now": now},
        )
        await session.commit()
        row = (await session.execute(
            sql_text(f"SELECT id, user_id, date, mood, note, created_at, updated_at FROM {MOODS_TABLE} WHERE id = :id"),
            {"id": record_id},
        )).mappings().fetchone()
    return dict(row)


async def list_moods(user_id: str, limit: int = 30, before_iso: str | None = None) -> list[dict]:
    clauses = ["user_id = :user_id"]
    params = {"user_id": user_id, "limit": limit}
    if before_iso:
        clauses.append("date < :before")
        params["before"] = before_iso
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT id, user_id, date, mood, note, created_at, updated_at
                FROM {MOODS_TABLE}
                WHERE {' AND '.join(clauses)}
                ORDER BY date DESC
                LIMIT :limit
                """
            ),
            params,
        )).mappings().all()
    return [dict(row) for row in rows]


async def list_moods_range(user_id: str, start_iso: str, end_iso: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT id, user_id, date, mood, note, created_at, updated_at
                FROM {MOODS_TABLE}
                WHERE user_id = :user_id AND date BETWEEN :start_date AND :end_date
                ORDER BY date
                """
            ),
            {"user_id": user_id, "start_date": start_iso, "end_date": end_iso},
        )).mappings().all()
    return [dict(row) for row in rows]


# Messages


async def insert_message(sender_id: str, receiver_id: str, text: str, message_type: str = "text") -> dict:
    record = {
        "id": new_id(),
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "text": text,
        "type": message_type,
        "is_read": 0,
        "created_at": now_iso(),
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {MESSAGES_TABLE} (id, sender_id, receiver_id, text, type, is_read, created_at)
                VALUES (:id, :sender_id, :receiver_id, :text, :type, :is_read, :created_at)
                """
            ),
            record,
        )
        await session.commit()
    return _as_bools(record, ("is_read",))


async def list_messages(user_a: str, user_b: str, limit: int = 50, before_iso: str | None = None) -> list[dict]:
    clauses = [
        "((sender_id = :user_a AND receiver_id = :user_b) OR (sender_id = :user_b AND receiver_id = :user_a))"
    ]
    params = {"user_a": user_a, "user_b": user_b, "limit": limit}
    if before_iso:
        clauses.append("created_at < :before")
        params["before"] = before_iso
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT id, sender_id, receiver_id, text, type, is_read, created_at
                FROM {MESSAGES_TABLE}
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at DESC
                LIMIT :limit
                """
            ),
            params,
        )).mappings().all()
    return [_as_bools(dict(row), ("is_read",)) for row in rows]


async def mark_messages_read(receiver_id: str, sender_id: str) -> int:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        result = await session.execute(
            sql_text(
                f"""
                UPDATE {MESSAGES_TABLE} SET is_read = 1
                WHERE receiver_id = :receiver_id AND sender_id = :sender_id AND is_read = 0
                """
            ),
            {"receiver_id": receiver_id, "sender_id": sender_id},
        )
        await session.commit()
    return int(result.rowcount or 0)


# Coupons


async def create_coupon(from_user: str, for_user: str, payload: dict) -> dict:
    now = now_iso()
    record = {
        "id": new_id(),
        "title": str(payload.get("title") or "").strip(),
        "description": str(payload.get("description") or "").strip(),
        "star_cost": int(5 if payload.get("star_cost") is None else payload["star_cost"]),
        "color": payload.get("color") or "#FFE4E1",
        "from_user": from_user,
        "for_user": for_user,
        "used": 0,
        "redeemed_at": None,
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {COUPONS_TABLE} ({COUPON_COLUMNS})
                VALUES (:id, :title, :description, :star_cost, :color, :from_user, :for_user, :used,
                        :redeemed_at, :created_at, :updated_at)
                """
            ),
            record,
        )
        await session.commit()
    return normalize_coupon_row(record)


async def get_coupon(coupon_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {COUPON_COLUMNS} FROM {COUPONS_TABLE} WHERE id = :id"),
            {"id": coupon_id},
        )).mappings().fetchone()
    return normalize_coupon_row(row) if row else None


async def list_coupons(uid: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {COUPON_COLUMNS} FROM {COUPONS_TABLE}
                WHERE from_user = :uid OR for_user = :uid
                ORDER BY created_at DESC
                """
            ),
            {"uid": uid},
        )).mappings().all()
    return [normalize_coupon_row(row) for row in rows]


async def delete_coupon(coupon_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(sql_text(f"DELETE FROM {COUPONS_TABLE} WHERE id = :id"), {"id": coupon_id})
        await session.commit()


# Calendar events


async def create_event(owner: str, payload: dict) -> dict:
    now = now_iso()
    record = {
        "id": new_id(),
        "owner": owner,
        "title": payload.get("title") or "Untitled event",
        "description": payload.get("description") or "",
        "start_at": payload.get("start_at"),
        "end_at": payload.get("end_at"),
        "all_day": int(bool(payload.get("all_day", False))),
        "source": payload.get("source") or "manual",
        "google_calendar_id": payload.get("google_calendar_id"),
        "google_event_id": payload.get("google_event_id"),
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {CALENDAR_EVENTS_TABLE} ({EVENT_COLUMNS})
                VALUES (:id, :owner, :title, :description, :start_at, :end_at, :all_day, :source,
                        :google_calendar_id, :google_event_id, :created_at, :updated_at)
                """
            ),
            record,
        )
        await session.commit()
    return normalize_event_row(record)


async def get_event(owner: str, event_id: str) -> dict:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(f"SELECT {EVENT_COLUMNS} FROM {CALENDAR_EVENTS_TABLE} WHERE id = :id AND owner = :owner"),
            {"id": event_id, "owner": owner},
        )).mappings().fetchone()
    return normalize_event_row(row) if row else {}


async def update_event(owner: str, event_id: str, patch: dict) -> dict:
    allowed = {"title", "description", "start_at", "end_at", "all_day", "google_calendar_id", "google_event_id"}
    updates = []
    params = {"id": event_id, "owner": owner}
    for key, value in patch.items():
        if key not in allowed:
            continue
        updates.append(f"{key} = :{key}")
        params[key] = int(bool(value)) if key == "all_day" else value
    if not updates:
        return await get_event(owner, event_id)
    updates.append("updated_at = :updated_at")
    params["updated_at"] = now_iso()
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"UPDATE {CALENDAR_EVENTS_TABLE} SET {', '.join(updates)} WHERE id = :id AND owner = :owner"
            ),
            params,
        )
        await session.commit()
    return await get_event(owner, event_id)


async def delete_event(owner: str, event_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"DELETE FROM {CALENDAR_EVENTS_TABLE} WHERE id = :id AND owner = :owner"),
            {"id": event_id, "owner": owner},
        )
        await session.commit()


async def list_events(owner: str, start_iso: str, end_iso: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT {EVENT_COLUMNS}
                FROM {CALENDAR_EVENTS_TABLE}
                WHERE owner = :owner AND start_at >= :start_at AND start_at < :end_at
                ORDER BY start_at
                """
            ),
            {"owner": owner, "start_at": start_iso, "end_at": end_iso},
        )).mappings().all()
    return [normalize_event_row(row) for row in rows]


async def get_event_by_google_ids(owner: str, calendar_id: str, google_event_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"""
                SELECT {EVENT_COLUMNS}
                FROM {CALENDAR_EVENTS_TABLE}
                WHERE owner = :owner
                  AND google_calendar_id = :calendar_id
                  AND google_event_id = :google_event_id
                LIMIT 1
                """
            ),
            {"owner": owner, "calendar_id": calendar_id, "google_event_id": google_event_id},
        )).mappings().fetchone()
    return normalize_event_row(row) if row else None


async def delete_event_by_google_ids(owner: str, calendar_id: str, google_event_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                DELETE FROM {CALENDAR_EVENTS_TABLE}
                WHERE owner = :owner
                  AND google_calendar_id = :calendar_id
                  AND google_event_id = :google_event_id
                """
            ),
            {"owner": owner, "calendar_id": calendar_id, "google_event_id": google_event_id},
        )
        await session.commit()


def google_event_times(event: dict) -> tuple[str | None, str | None, bool]:
    start = event.get("start") or {}
    end = event.get("end") or {}
    if start.get("dateTime"):
        return str(start["dateTime"]), end.get("dateTime"), False
    if start.get("date"):
        return str(start["date"]), end.get("date"), True
    return None, None, False


async def upsert_google_event(owner: str, calendar_id: str, event: dict) -> dict | None:
    google_event_id = event.get("id")
    if not google_event_id:
        return None
    start_at, end_at, all_day = google_event_times(event)
    if not start_at:
        return None
    payload = {
        "title": event.get("summary") or "Google event",
        "description": event.get("description") or "",
        "start_at": start_at,
        "end_at": end_at,
        "all_day": all_day,
        "google_calendar_id": calendar_id,
        "google_event_id": google_event_id,
    }
    existing = await get_event_by_google_ids(owner, calendar_id, google_event_id)
    if existing:
        return await update_event(owner, existing["id"], payload)
    return await create_event(owner, {**payload, "source": "google"})


# Google Calendar tokens, sync cursor and outbox


async def enqueue_outbox(user_id: str, entity_type: str, entity_id: str, action: str, payload: dict | None = None) -> None:
    now = now_iso()
    row = {
        "id": new_id(),
        "user_id": user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "payload_json": json.dumps(payload or {}, ensure_ascii=False, default=str),
        "status": "pending",
        "attempts": 0,
        "next_retry_at": None,
        "last_error": None,
        "created_at": now,
        "updated_at": now,
    }
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {SYNC_OUTBOX_TABLE}
                (id, user_id, entity_type, entity_id, action, payload_json, status, attempts, next_retry_at, last_error, created_at, updated_at)
                VALUES (:id, :user_id, :entity_type, :entity_id, :action, :payload_json, :status, :attempts, :next_retry_at, :last_error, :created_at, :updated_at)
                """
            ),
            row,
        )
        await session.commit()


async def list_pending_outbox(limit: int = 25) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(
            sql_text(
                f"""
                SELECT id, user_id, entity_type, entity_id, action, payload_json,
                       status, attempts, next_retry_at, last_error, created_at, updated_at
                FROM {SYNC_OUTBOX_TABLE}
                WHERE status = 'pending'
                  AND (next_retry_at IS NULL OR next_retry_at <= :now)
                ORDER BY created_at ASC
                LIMIT :limit
                """
            ),
            {"now": now_iso(), "limit": limit},
        )).mappings().all()
    return [dict(row) for row in rows]


async def mark_outbox_done(outbox_id: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(f"UPDATE {SYNC_OUTBOX_TABLE} SET status = 'done', updated_at = :updated_at WHERE id = :id"),
            {"id": outbox_id, "updated_at": now_iso()},
        )
        await session.commit()


async def mark_outbox_error(outbox_id: str, attempts: int, next_retry_at: str, error: str) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                UPDATE {SYNC_OUTBOX_TABLE}
                SET status = 'pending',
                    attempts = :attempts,
                    next_retry_at = :next_retry_at,
                    last_error = :last_error,
                    updated_at = :updated_at
                WHERE id = :id
                """
            ),
            {
                "id": outbox_id,
                "attempts": attempts,
                "next_retry_at": next_retry_at,
                "last_error": error[:500],
                "updated_at": now_iso(),
            },
        )
        await session.commit()


async def get_google_tokens(user_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"SELECT user_id, refresh_token_enc, access_token, expires_at, scope, updated_at "
                f"FROM {GOOGLE_TOKENS_TABLE} WHERE user_id = :user_id"
            ),
            {"user_id": user_id},
        )).mappings().fetchone()
    return dict(row) if row else None


async def store_google_tokens(
    user_id: str,
    refresh_token_enc: str,
    access_token: str | None = None,
    expires_at: str | None = None,
    scope: str | None = None,
) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {GOOGLE_TOKENS_TABLE}
                    (user_id, refresh_token_enc, access_token, expires_at, scope, updated_at)
                VALUES
                    (:user_id, :refresh_token_enc, :access_token, :expires_at, :scope, :updated_at)
                ON CONFLICT(user_id) DO UPDATE SET
                    refresh_token_enc = EXCLUDED.refresh_token_enc,
                    access_token = COALESCE(EXCLUDED.access_token, {GOOGLE_TOKENS_TABLE}.access_token),
                    expires_at = COALESCE(EXCLUDED.expires_at, {GOOGLE_TOKENS_TABLE}.expires_at),
                    scope = COALESCE(EXCLUDED.scope, {GOOGLE_TOKENS_TABLE}.scope),
                    updated_at = EXCLUDED.updated_at
                """
            ),
            {
                "user_id": user_id,
                "refresh_token_enc": refresh_token_enc,
                "access_token": access_token,
                "expires_at": expires_at,
                "scope": scope,
                "updated_at": now_iso(),
            },
        )
        await session.commit()


async def update_google_access_token(user_id: str, access_token: str, expires_at: str, scope: str | None = None) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                UPDATE {GOOGLE_TOKENS_TABLE}
                SET access_token = :access_token,
                    expires_at = :expires_at,
                    scope = COALESCE(:scope, scope),
                    updated_at = :updated_at
                WHERE user_id = :user_id
                """
            ),
            {
                "user_id": user_id,
                "access_token": access_token,
                "expires_at": expires_at,
                "scope": scope,
                "updated_at": now_iso(),
            },
        )
        await session.commit()


async def get_sync_cursor(user_id: str, calendar_id: str) -> dict | None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        row = (await session.execute(
            sql_text(
                f"SELECT user_id, calendar_id, sync_token, last_synced_at, last_error FROM {SYNC_CURSOR_TABLE} "
                "WHERE user_id = :user_id AND calendar_id = :calendar_id"
            ),
            {"user_id": user_id, "calendar_id": calendar_id},
        )).mappings().fetchone()
    return dict(row) if row else None


async def update_sync_cursor(user_id: str, calendar_id: str, sync_token: str | None, last_error: str | None) -> None:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        await session.execute(
            sql_text(
                f"""
                INSERT INTO {SYNC_CURSOR_TABLE} (user_id, calendar_id, sync_token, last_synced_at, last_error)
                VALUES (:user_id, :calendar_id, :sync_token, :last_synced_at, :last_error)
                ON CONFLICT(user_id, calendar_id) DO UPDATE SET
                    sync_token = EXCLUDED.sync_token,
                    last_synced_at = EXCLUDED.last_synced_at,
                    last_error = EXCLUDED.last_error
                """
            ),
            {
                "user_id": user_id,
                "calendar_id": calendar_id,
                "sync_token": sync_token,
                "last_synced_at": now_iso(),
                "last_error": last_error,
            },
        )
        await session.commit()
