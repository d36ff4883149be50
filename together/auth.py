from __future__ import annotations

from dataclasses import dataclass, field

from fastapi import Header

from together import repositories
from together.errors import CallableError, UNAUTHENTICATED, PERMISSION_DENIED
from together.settings import get_settings


@dataclass(frozen=True)
class Caller:
    uid: str
    claims: dict = field(default_factory=dict)

    @property
    def is_admin(self) -> bool:
        return bool(self.claims.get("admin"))


async def optional_caller(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_backend_token: str | None = Header(default=None, alias="X-Backend-Token"),
) -> Caller | None:
    settings = get_settings()
    if not x_backend_token or x_backend_token != settings.backend_session_secret:
        return None
    uid = (x_user_id or "").strip()
    if not uid:
        return None
    return Caller(uid=uid, claims={"admin": await repositories.is_admin(uid)})


async def require_caller(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_backend_token: str | None = Header(default=None, alias="X-Backend-Token"),
) -> Caller:
    caller = await optional_caller(x_user_id, x_backend_token)
    if caller is None:
        raise CallableError(UNAUTHENTICATED, "Authentication required")
    return caller


def require_admin(caller: Caller) -> None:
    if not caller.is_admin:
        raise CallableError(PERMISSION_DENIED, "Admin privileges required")
