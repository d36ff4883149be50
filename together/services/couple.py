from __future__ import annotations

import logging

from together import repositories
from together.auth import Caller
from together.errors import CallableError, INVALID_ARGUMENT, NOT_FOUND, PERMISSION_DENIED
from together.services.partners import require_feature, require_partner

logger = logging.getLogger(__name__)


async def _linked_user(caller: Caller, feature: str) -> tuple[dict, str]:
    user = await repositories.get_user(caller.uid)
    if not user:
        raise CallableError(NOT_FOUND, "User not found")
    require_feature(user, feature)
    return user, require_partner(user)


async def send_message(caller: Caller, text: str, message_type: str = "text") -> dict:
    body = str(text or "").strip()
    if not body:
        raise CallableError(INVALID_ARGUMENT, "Message text is required")
    _, partner_id = await _linked_user(caller, "messages")
    return await repositories.insert_message(caller.uid, partner_id, body, message_type)


async def list_couple_messages(caller: Caller, limit: int = 50, before: str | None = None) -> list[dict]:
    _, partner_id = await _linked_user(caller, "messages")
    return await repositories.list_messages(caller.uid, partner_id, limit=limit, before_iso=before)


async def mark_read(caller: Caller) -> int:
    _, partner_id = await _linked_user(caller, "messages")
    return await repositories.mark_messages_read(caller.uid, partner_id)


async def create_coupon(caller: Caller, payload: dict) -> dict:
    if not str(payload.get("title") or "").strip():
        raise CallableError(INVALID_ARGUMENT, "Coupon title is required")
    star_cost = payload.get("star_cost")
    if star_cost is not None and int(star_cost) < 0:
        raise CallableError(INVALID_ARGUMENT, "star_cost must not be negative")
    _, partner_id = await _linked_user(caller, "coupons")
    coupon = await repositories.create_coupon(caller.uid, partner_id, payload)
    logger.info("Coupon %s created by %s for %s", coupon["id"], caller.uid, partner_id)
    return coupon


async def delete_coupon(caller: Caller, coupon_id: str) -> None:
    coupon = await repositories.get_coupon(coupon_id)
    if not coupon:
        raise CallableError(NOT_FOUND, "Coupon not found")
    if coupon["from_user"] != caller.uid:
        raise CallableError(PERMISSION_DENIED, "Only the creator can delete a coupon")
    await repositories.delete_coupon(coupon_id)
