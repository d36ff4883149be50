from __future__ import annotations

import json

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together.db_init import LEDGER_TABLE, USERS_TABLE
from together.repositories import USER_COLUMNS, new_id, normalize_user_row
from together.timeutil import now_iso

# Ledger entry types
AWARD = "AWARD"
HABIT_COMPLETION = "HABIT_COMPLETION"
STAR_TRANSACTION = "STAR_TRANSACTION"
REDEEM = "REDEEM"
REDEEM_COUPON = "REDEEM_COUPON"

SYSTEM_SENDER = "SYSTEM"

LEDGER_TYPES = [AWARD, HABIT_COMPLETION, STAR_TRANSACTION, REDEEM, REDEEM_COUPON]


def participants_of(*uids) -> list[str]:
    seen = []
    for uid in uids:
        if uid and uid not in seen:
            seen.append(uid)
    return seen


async def insert_ledger_entry(session: AsyncSession, entry: dict) -> bool:
    """Append one ledger row inside the caller's transaction.

    Returns False when an ``award_key`` is given and a row with that key already
    exists; the caller must not touch the balance in that case.
    """
    row = {
        "id": entry.get("id") or new_id(),
        "from_uid": entry["from_uid"],
        "to_uid": entry.get("to_uid"),
        "owner": entry.get("owner"),
        "amount": int(entry["amount"]),
        "type": entry["type"],
        "reason": entry.get("reason"),
        "category": entry.get("category"),
        "participants_json": json.dumps(entry.get("participants") or []),
        "status": entry.get("status"),
        "habit_id": entry.get("habit_id"),
        "completed_count": entry.get("completed_count"),
        "week_start_date": entry.get("week_start_date"),
        "week_end_date": entry.get("week_end_date"),
        "coupon_id": entry.get("coupon_id"),
        "award_key": entry.get("award_key"),
        "created_at": entry.get("created_at") or now_iso(),
    }
    result = await session.execute(
        sql_text(
            f"""
            INSERT INTO {LEDGER_TABLE}
                (id, from_uid, to_uid, owner, amount, type, reason, category, participants_json, status,
                 habit_id, completed_count, week_start_date, week_end_date, coupon_id, award_key, created_at)
            VALUES
                (:id, :from_uid, :to_uid, :owner, :amount, :type, :reason, :category, :participants_json, :status,
                 :habit_id, :completed_count, :week_start_date, :week_end_date, :coupon_id, :award_key, :created_at)
            ON CONFLICT DO NOTHING
            """
        ),
        row,
    )
    return result.rowcount == 1


async def increment_stars(session: AsyncSession, uid: str, amount: int, *, awarded: bool = False) -> None:
    params = {"uid": uid, "amount": int(amount), "now": now_iso()}
    extra = ", last_star_awarded_at = :now" if awarded else ""
    await session.execute(
        sql_text(
            f"UPDATE {USERS_TABLE} SET stars = COALESCE(stars, 0) + :amount, updated_at = :now{extra} WHERE uid = :uid"
        ),
        params,
    )


async def load_user(session: AsyncSession, uid: str) -> dict | None:
    row = (await session.execute(
        sql_text(f"SELECT {USER_COLUMNS} FROM {USERS_TABLE} WHERE uid = :uid"),
        {"uid": uid},
    )).mappings().fetchone()
    return normalize_user_row(row) if row else None
