from __future__ import annotations

from fastapi import APIRouter, Depends

from together import repositories
from together.auth import Caller, require_caller
from together.errors import CallableError, NOT_FOUND
from together.schemas import UserProfile, UserSettingsPatch
from together.services.account import delete_account
from together.services.partners import FEATURE_ACCESS, user_mode

router = APIRouter()


@router.get("/v1/users/me")
async def get_me(caller: Caller = Depends(require_caller)):
    user = await repositories.get_user(caller.uid)
    if not user or user.get("deleted_at"):
        raise CallableError(NOT_FOUND, "User not found")
    return {
        **user,
        "is_admin": caller.is_admin,
        "features": sorted(FEATURE_ACCESS[user_mode(user)]),
    }


@router.put("/v1/users/me")
async def put_me(payload: UserProfile, caller: Caller = Depends(require_caller)):
    return await repositories.upsert_user(caller.uid, payload.email, payload.display_name)


@router.patch("/v1/users/me/settings")
async def patch_settings(payload: UserSettingsPatch, caller: Caller = Depends(require_caller)):
    patch = payload.model_dump(by_alias=True, exclude_none=True)
    settings = await repositories.update_user_settings(caller.uid, patch)
    if not settings:
        raise CallableError(NOT_FOUND, "User not found")
    return {"settings": settings}


@router.delete("/v1/users/me")
async def delete_me(caller: Caller = Depends(require_caller)):
    return await delete_account(caller)
