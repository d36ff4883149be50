from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from together import repositories
from together.auth import Caller, require_caller
from together.schemas import CouponCreate, MessageCreate, PartnerLink
from together.services import couple, partners, stars

router = APIRouter()


@router.post("/v1/partner/link")
async def link_partner(payload: PartnerLink, caller: Caller = Depends(require_caller)):
    return await partners.link_partner_by_email(caller, payload.email)


@router.delete("/v1/partner")
async def unlink_partner(caller: Caller = Depends(require_caller)):
    return await partners.unlink_partner(caller)


@router.get("/v1/messages")
async def list_messages(
    limit: int = Query(50, ge=1, le=200),
    before: str | None = Query(None),
    caller: Caller = Depends(require_caller),
):
    items = await couple.list_couple_messages(caller, limit=limit, before=before)
    next_before = items[-1]["created_at"] if len(items) == limit else None
    return {"items": items, "next_before": next_before}


@router.post("/v1/messages")
async def send_message(payload: MessageCreate, caller: Caller = Depends(require_caller)):
    return await couple.send_message(caller, payload.text, payload.type)


@router.post("/v1/messages/read")
async def mark_read(caller: Caller = Depends(require_caller)):
    return {"updated": await couple.mark_read(caller)}


@router.get("/v1/coupons")
async def list_coupons(caller: Caller = Depends(require_caller)):
    return {"items": await repositories.list_coupons(caller.uid)}


@router.post("/v1/coupons")
async def create_coupon(payload: CouponCreate, caller: Caller = Depends(require_caller)):
    return await couple.create_coupon(caller, payload.model_dump(exclude_none=True))


@router.delete("/v1/coupons/{coupon_id}")
async def delete_coupon(coupon_id: str, caller: Caller = Depends(require_caller)):
    await couple.delete_coupon(caller, coupon_id)
    return {"ok": True}


@router.post("/v1/coupons/{coupon_id}/redeem")
async def redeem_coupon(coupon_id: str, caller: Caller = Depends(require_caller)):
    return await stars.redeem_coupon(caller, coupon_id)
