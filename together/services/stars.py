from __future__ import annotations

import logging

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together import ledger, repositories
from together.auth import Caller
from together.db_init import COUPONS_TABLE
from together.errors import CallableError, FAILED_PRECONDITION, INVALID_ARGUMENT, NOT_FOUND, PERMISSION_DENIED
from together.settings import get_settings
from together.timeutil import now_iso
from together.transactions import run_transaction

logger = logging.getLogger(__name__)


def validate_award_amount(amount) -> int:
    # bool is an int subclass; True must not count as one star.
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise CallableError(INVALID_ARGUMENT, "amount must be an integer")
    ceiling = get_settings().max_star_award
    if amount < 1 or amount > ceiling:
        raise CallableError(INVALID_ARGUMENT, f"amount must be between 1 and {ceiling}")
    return amount


async def award_stars(
    caller: Caller, to_user_id: str, amount, reason: str | None = None, category: str | None = None
) -> dict:
    amount = validate_award_amount(amount)
    if not to_user_id:
        raise CallableError(INVALID_ARGUMENT, "toUserId and amount are required")

    async def work(session: AsyncSession) -> dict:
        recipient = await ledger.load_user(session, to_user_id)
        if not recipient:
            raise CallableError(NOT_FOUND, "Recipient not found")
        await ledger.increment_stars(session, to_user_id, amount)
        await ledger.insert_ledger_entry(
            session,
            {
                "from_uid": caller.uid,
                "to_uid": to_user_id,
                "owner": caller.uid,
                "amount": amount,
                "type": ledger.AWARD,
                "reason": reason,
                "category": category,
                "participants": ledger.participants_of(caller.uid, to_user_id),
            },
        )
        return {"success": True}

    result = await run_transaction(work)
    logger.info("%s awarded %s stars to %s", caller.uid, amount, to_user_id)
    return result


async def get_balance(uid: str) -> int:
    user = await repositories.get_user(uid)
    if not user:
        raise CallableError(NOT_FOUND, "User not found")
    return user["stars"]


def summarize_ledger(uid: str, entries: list[dict]) -> dict:
    awarded = [item for item in entries if item.get("from_uid") == uid and item.get("to_uid") != uid]
    received = [item for item in entries if item.get("to_uid") == uid and int(item.get("amount") or 0) > 0]
    return {
        "total_awarded": sum(int(item.get("amount") or 0) for item in awarded),
        "total_received": sum(int(item.get("amount") or 0) for item in received),
        "largest_award": max((int(item.get("amount") or 0) for item in received), default=0),
        "count": len(entries),
    }


async def redeem_coupon(caller: Caller, coupon_id: str) -> dict:
    """Spend the coupon's star cost from its recipient and mark it used."""
    if not coupon_id:
        raise CallableError(INVALID_ARGUMENT, "couponId is required")

    async def work(session: AsyncSession) -> dict:
        row = (await session.execute(
            sql_text(f"SELECT {repositories.COUPON_COLUMNS} FROM {COUPONS_TABLE} WHERE id = :id"),
            {"id": coupon_id},
        )).mappings().fetchone()
        if not row:
            raise CallableError(NOT_FOUND, "Coupon not found")
        coupon = repositories.normalize_coupon_row(row)
        if coupon["for_user"] != caller.uid:
            raise CallableError(PERMISSION_DENIED, "This coupon belongs to someone else")
        if coupon["used"]:
            raise CallableError(FAILED_PRECONDITION, "Coupon already redeemed")
        user = await ledger.load_user(session, caller.uid)
        cost = int(coupon.get("star_cost") or 0)
        balance = (user or {}).get("stars", 0)
        if balance < cost:
            raise CallableError(FAILED_PRECONDITION, "Not enough stars")

        await ledger.increment_stars(session, caller.uid, -cost)
        await ledger.insert_ledger_entry(
            session,
            {
                "from_uid": caller.uid,
                "to_uid": caller.uid,
                "owner": caller.uid,
                "amount": -cost,
                "type": ledger.REDEEM_COUPON,
                "reason": f"Redeemed coupon: {coupon['title']}",
                "participants": ledger.participants_of(caller.uid, coupon["from_user"]),
                "coupon_id": coupon_id,
            },
        )
        now = now_iso()
        await session.execute(
            sql_text(f"UPDATE {COUPONS_TABLE} SET used = 1, redeemed_at = :now, updated_at = :now WHERE id = :id"),
            {"id": coupon_id, "now": now},
        )
        return {"success": True, "balance": balance - cost}

    return await run_transaction(work)
