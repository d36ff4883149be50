from __future__ import annotations

import json
import logging

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together import ledger, repositories
from together.auth import Caller
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
from together.errors import CallableError, NOT_FOUND
from together.maintenance import apply_in_batches
from together.services.partners import _set_partner
from together.timeutil import now_iso
from together.transactions import run_transaction

logger = logging.getLogger(__name__)

# Rows the user owns or takes part in; participant matches are confirmed after decoding.
_USER_ROWS = [
    (MESSAGES_TABLE, "id", "sender_id = :uid OR receiver_id = :uid"),
    (COUPONS_TABLE, "id", "from_user = :uid OR for_user = :uid"),
    (
        LEDGER_TABLE,
        "id, from_uid, to_uid, participants_json",
        "from_uid = :uid OR to_uid = :uid OR participants_json LIKE :member",
    ),
    (HABITS_TABLE, "id", "owner = :uid"),
    (DAILY_STATUS_TABLE, "id", "owner = :uid OR partner_id = :uid"),
    (REMINDERS_TABLE, "id, owner, participants_json", "owner = :uid OR participants_json LIKE :member"),
    (MOODS_TABLE, "id", "user_id = :uid"),
    (CALENDAR_EVENTS_TABLE, "id", "owner = :uid"),
    (SYNC_OUTBOX_TABLE, "id", "user_id = :uid"),
]


def _takes_part(row: dict, uid: str) -> bool:
    if uid in {row.get("owner"), row.get("from_uid"), row.get("to_uid")}:
        return True
    try:
        participants = json.loads(row.get("participants_json") or "[]")
    except ValueError:
        return False
    return isinstance(participants, list) and uid in participants


async def _collect_rows(uid: str) -> list[tuple[str, str]]:
    pending = []
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        for table, columns, where in _USER_ROWS:
            params = {"uid": uid}
            if ":member" in where:
                params["member"] = f'%"{uid}"%'
            rows = (await session.execute(
                sql_text(f"SELECT {columns} FROM {table} WHERE {where}"), params
            )).mappings().all()
            for row in rows:
                if "participants_json" in row and not _takes_part(dict(row), uid):
                    continue
                pending.append((table, row["id"]))
    return pending


async def _delete_rows(session: AsyncSession, chunk) -> None:
    for table, row_id in chunk:
        await session.execute(sql_text(f"DELETE FROM {table} WHERE id = :id"), {"id": row_id})


async def delete_account(caller: Caller) -> dict:
    """Remove the caller's data, unlink their partner and mark the user deleted."""
    user = await repositories.get_user(caller.uid)
    if not user or user.get("deleted_at"):
        raise CallableError(NOT_FOUND, "User not found")

    deleted = await apply_in_batches(await _collect_rows(caller.uid), _delete_rows)

    async def work(session: AsyncSession) -> str | None:
        user = await ledger.load_user(session, caller.uid)
        if not user:
            raise CallableError(NOT_FOUND, "User not found")
        partner_id = user.get("partner_id")
        await _set_partner(session, user, None)
        if partner_id:
            partner = await ledger.load_user(session, partner_id)
            if partner and partner.get("partner_id") == caller.uid:
                await _set_partner(session, partner, None)
        for table, key in ((GOOGLE_TOKENS_TABLE, "user_id"), (SYNC_CURSOR_TABLE, "user_id"), (ADMINS_TABLE, "uid")):
            await session.execute(sql_text(f"DELETE FROM {table} WHERE {key} = :uid"), {"uid": caller.uid})
        await session.execute(
            sql_text(f"UPDATE {USERS_TABLE} SET deleted_at = :now WHERE uid = :uid"),
            {"uid": caller.uid, "now": now_iso()},
        )
        return partner_id

    partner_id = await run_transaction(work)
    logger.info("Deleted account %s (%s rows removed, partner %s unlinked)", caller.uid, deleted, partner_id)
    return {"success": True, "deleted": deleted}
