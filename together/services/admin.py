from __future__ import annotations

import logging

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together import ledger, maintenance, repositories
from together.auth import Caller, require_admin
from together.db_init import ADMINS_TABLE, CLEANABLE_TABLES
from together.errors import CallableError, INVALID_ARGUMENT, NOT_FOUND, PERMISSION_DENIED
from together.timeutil import now_iso
from together.transactions import run_transaction

logger = logging.getLogger(__name__)


async def setup_first_admin(caller: Caller) -> dict:
    async def work(session: AsyncSession) -> None:
        existing = (await session.execute(sql_text(f"SELECT COUNT(*) FROM {ADMINS_TABLE}"))).scalar_one()
        if existing:
            raise CallableError(PERMISSION_DENIED, "An admin already exists")
        if not await ledger.load_user(session, caller.uid):
            raise CallableError(NOT_FOUND, "User document not found")
        await session.execute(
            sql_text(f"INSERT INTO {ADMINS_TABLE} (uid, granted_by, created_at) VALUES (:uid, :uid, :now)"),
            {"uid": caller.uid, "now": now_iso()},
        )

    await run_transaction(work)
    logger.info("First admin set up: %s", caller.uid)
    return {"success": True}


async def set_admin(caller: Caller, uid: str, is_admin: bool) -> dict:
    require_admin(caller)
    if not await repositories.get_user(uid):
        raise CallableError(NOT_FOUND, "User not found")
    await repositories.set_admin(uid, is_admin, granted_by=caller.uid)
    logger.info("%s set admin=%s for %s", caller.uid, is_admin, uid)
    return {"success": True}


async def cleanup_collection(caller: Caller, collection_name: str) -> dict:
    require_admin(caller)
    if collection_name not in CLEANABLE_TABLES:
        raise CallableError(INVALID_ARGUMENT, f"Unknown collection: {collection_name}")
    count = await maintenance.clean_table(collection_name)
    return {"success": True, "count": count}
