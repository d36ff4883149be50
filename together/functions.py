from __future__ import annotations

import functools
import logging
from typing import Awaitable, Callable, Type

from pydantic import BaseModel, ValidationError

from together.auth import Caller
from together.errors import CallableError, INTERNAL, INVALID_ARGUMENT, NOT_FOUND, UNAUTHENTICATED
from together.schemas import (
    AwardStarsData,
    CleanupCollectionData,
    CreateReminderData,
    DeleteReminderData,
    LinkPartnerData,
    RedeemCouponData,
    SetAdminData,
    ToggleDailyStatusData,
    ToggleReminderData,
    UpdateReminderData,
)
from together.services import account, admin, habit_awards, partners, reminders, stars

logger = logging.getLogger(__name__)

Handler = Callable[[Caller, dict], Awaitable[dict]]

CALLABLES: dict[str, Handler] = {}


def _parse(model: Type[BaseModel], data: dict | None) -> BaseModel:
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
        raise CallableError(INVALID_ARGUMENT, f"Missing or invalid fields: {fields}") from exc


def on_call(name: str):
    """Register an authenticated callable under ``name``.

    Anything other than a ``CallableError`` escaping the handler is logged and
    reported to the client as ``internal``.
    """

    def decorator(func: Callable[[Caller, dict], Awaitable[dict]]) -> Handler:
        @functools.wraps(func)
        async def wrapper(caller: Caller | None, data: dict | None) -> dict:
            if caller is None:
                raise CallableError(UNAUTHENTICATED, "Authentication required")
            try:
                return await func(caller, data or {})
            except CallableError:
                raise
            except Exception as exc:
                logger.exception("%s failed: %s", name, exc)
                raise CallableError(INTERNAL, f"{name} failed") from exc

        CALLABLES[name] = wrapper
        return wrapper

    return decorator


async def dispatch(name: str, caller: Caller | None, data: dict | None) -> dict:
    handler = CALLABLES.get(name)
    if handler is None:
        raise CallableError(NOT_FOUND, f"Unknown function: {name}")
    return await handler(caller, data)


@on_call("toggleReminder")
async def toggle_reminder(caller: Caller, data: dict) -> dict:
    payload = _parse(ToggleReminderData, data)
    return await reminders.toggle_reminder(caller, payload.reminder_id, payload.completed)


@on_call("createReminder")
async def create_reminder(caller: Caller, data: dict) -> dict:
    payload = _parse(CreateReminderData, data)
    return await reminders.create_reminder(caller, payload.model_dump())


@on_call("updateReminder")
async def update_reminder(caller: Caller, data: dict) -> dict:
    payload = _parse(UpdateReminderData, data)
    return await reminders.update_reminder(caller, payload.id, payload.model_dump(exclude={"id"}, exclude_none=True))


@on_call("deleteReminder")
async def delete_reminder(caller: Caller, data: dict) -> dict:
    payload = _parse(DeleteReminderData, data)
    return await reminders.delete_reminder(caller, payload.id)


@on_call("awardStars")
async def award_stars(caller: Caller, data: dict) -> dict:
    payload = _parse(AwardStarsData, data)
    return await stars.award_stars(caller, payload.to_user_id, payload.amount, payload.reason, payload.category)


@on_call("toggleDailyStatus")
async def toggle_daily_status(caller: Caller, data: dict) -> dict:
    payload = _parse(ToggleDailyStatusData, data)
    await habit_awards.toggle_daily_status(caller, payload.habit_id, payload.date, payload.done)
    return {"success": True}


@on_call("linkPartner")
async def link_partner(caller: Caller, data: dict) -> dict:
    payload = _parse(LinkPartnerData, data)
    return await partners.link_partner_by_email(caller, payload.email)


@on_call("unlinkPartner")
async def unlink_partner(caller: Caller, data: dict) -> dict:
    return await partners.unlink_partner(caller)


@on_call("deleteAccount")
async def delete_account(caller: Caller, data: dict) -> dict:
    return await account.delete_account(caller)


@on_call("redeemCoupon")
async def redeem_coupon(caller: Caller, data: dict) -> dict:
    payload = _parse(RedeemCouponData, data)
    return await stars.redeem_coupon(caller, payload.coupon_id)


@on_call("setupFirstAdmin")
async def setup_first_admin(caller: Caller, data: dict) -> dict:
    return await admin.setup_first_admin(caller)


@on_call("setAdmin")
async def set_admin(caller: Caller, data: dict) -> dict:
    payload = _parse(SetAdminData, data)
    return await admin.set_admin(caller, payload.uid, payload.is_admin)


@on_call("cleanupCollection")
async def cleanup_collection(caller: Caller, data: dict) -> dict:
    payload = _parse(CleanupCollectionData, data)
    return await admin.cleanup_collection(caller, payload.collection_name)
