from __future__ import annotations

import json
import logging

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together import ledger
from together.auth import Caller
from together.db_init import USERS_TABLE
from together.errors import CallableError, FAILED_PRECONDITION, INVALID_ARGUMENT, NOT_FOUND
from together.repositories import (
    USER_COLUMNS,
    USER_MODE_PARTNER,
    USER_MODE_SOLO,
    normalize_user_row,
)
from together.timeutil import now_iso
from together.transactions import run_transaction

logger = logging.getLogger(__name__)

FEATURE_ACCESS = {
    USER_MODE_PARTNER: {"messages", "stars", "coupons", "reminders", "accountability"},
    USER_MODE_SOLO: {"reminders", "accountability"},
}


def user_mode(user: dict) -> str:
    return (user.get("settings") or {}).get("mode") or USER_MODE_SOLO


def can_use_feature(user: dict, feature: str) -> bool:
    return feature in FEATURE_ACCESS.get(user_mode(user), set())


def require_feature(user: dict, feature: str) -> None:
    if not can_use_feature(user, feature):
        raise CallableError(FAILED_PRECONDITION, f"{feature} requires a linked partner")


def require_partner(user: dict | None) -> str:
    partner_id = (user or {}).get("partner_id")
    if not partner_id:
        raise CallableError(FAILED_PRECONDITION, "No partner linked")
    return partner_id


async def _set_partner(session: AsyncSession, user: dict, partner_id: str | None) -> None:
    settings = dict(user["settings"])
    settings["mode"] = USER_MODE_PARTNER if partner_id else USER_MODE_SOLO
    await session.execute(
        sql_text(
            f"UPDATE {USERS_TABLE} SET partner_id = :partner_id, settings_json = :settings_json, "
            "updated_at = :now WHERE uid = :uid"
        ),
        {"uid": user["uid"], "partner_id": partner_id, "settings_json": json.dumps(settings), "now": now_iso()},
    )


async def link_partner_by_email(caller: Caller, email: str) -> dict:
    partner_email = str(email or "").strip().lower()
    if not partner_email:
        raise CallableError(INVALID_ARGUMENT, "Partner email is required")

    async def work(session: AsyncSession) -> dict:
        row = (await session.execute(
            sql_text(f"SELECT {USER_COLUMNS} FROM {USERS_TABLE} WHERE email = :email AND deleted_at IS NULL"),
            {"email": partner_email},
        )).mappings().fetchone()
        if not row:
            raise CallableError(
                NOT_FOUND, "No user found with that email. Make sure your partner has created an account first."
            )
        partner = normalize_user_row(row)
        if partner["uid"] == caller.uid:
            raise CallableError(INVALID_ARGUMENT, "You cannot link with yourself")
        user = await ledger.load_user(session, caller.uid)
        if not user:
            raise CallableError(NOT_FOUND, "User not found")
        if user.get("partner_id"):
            raise CallableError(FAILED_PRECONDITION, "You are already linked with a partner")
        if partner.get("partner_id"):
            raise CallableError(FAILED_PRECONDITION, "This user is already linked with someone else")
        await _set_partner(session, user, partner["uid"])
        await _set_partner(session, partner, user["uid"])
        return {"success": True, "partnerId": partner["uid"]}

    result = await run_transaction(work)
    logger.info("Linked partners %s and %s", caller.uid, result["partnerId"])
    return result


async def unlink_partner(caller: Caller) -> dict:
    async def work(session: AsyncSession) -> str:
        user = await ledger.load_user(session, caller.uid)
        partner_id = require_partner(user)
        await _set_partner(session, user, None)
        partner = await ledger.load_user(session, partner_id)
        if partner and partner.get("partner_id") == caller.uid:
            await _set_partner(session, partner, None)
        return partner_id

    partner_id = await run_transaction(work)
    logger.info("Unlinked partners %s and %s", caller.uid, partner_id)
    return {"success": True}
