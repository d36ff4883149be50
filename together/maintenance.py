from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, Sequence, TypeVar

from sqlalchemy import text as sql_text
from sqlalchemy.ext.asyncio import AsyncSession

from together.db import dispose_engine, get_sessionmaker
from together.db_init import ADMINS_TABLE, CLEANABLE_TABLES, LEDGER_TABLE, USERS_TABLE, init_db
from together.ledger import STAR_TRANSACTION, participants_of
from together.repositories import DEFAULT_USER_SETTINGS
from together.settings import get_settings
from together.timeutil import now_iso
from together.transactions import run_transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PRIMARY_KEYS = {USERS_TABLE: "uid", ADMINS_TABLE: "uid"}


async def apply_in_batches(
    items: Sequence[T],
    op: Callable[[AsyncSession, Sequence[T]], Awaitable[None]],
    batch_size: int | None = None,
) -> int:
    """Apply ``op`` to ``items`` in chunks, one transaction per chunk."""
    ceiling = get_settings().bulk_batch_size
    size = min(batch_size or ceiling, ceiling)
    if size < 1:
        raise ValueError("batch_size must be positive")
    processed = 0
    for offset in range(0, len(items), size):
        chunk = items[offset : offset + size]

        async def work(session: AsyncSession, chunk=chunk) -> None:
            await op(session, chunk)

        await run_transaction(work)
        processed += len(chunk)
        logger.info("Committed batch of %s updates", len(chunk))
    return processed


async def _fetch_all(query: str) -> list[dict]:
    session_factory = get_sessionmaker()
    async with session_factory() as session:
        rows = (await session.execute(sql_text(query))).mappings().all()
    return [dict(row) for row in rows]


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def user_repairs(row: dict) -> dict:
    updates = {}
    if not isinstance(row.get("stars"), int):
        updates["stars"] = _as_int(row.get("stars"), 0)
    try:
        settings = json.loads(row.get("settings_json") or "")
    except ValueError:
        settings = None
    if not isinstance(settings, dict):
        updates["settings_json"] = json.dumps(DEFAULT_USER_SETTINGS)
    return updates


def transaction_repairs(row: dict) -> dict | None:
    """Return the column fixes a legacy ledger row needs, or None when it cannot be repaired."""
    updates = {}
    try:
        participants = json.loads(row.get("participants_json") or "")
    except ValueError:
        participants = None
    if not isinstance(participants, list):
        participants = sorted(participants_of(row.get("from_uid"), row.get("to_uid")))
        if not participants:
            return None
        updates["participants_json"] = json.dumps(participants)
    if not row.get("created_at"):
        updates["created_at"] = now_iso()
    if not row.get("type"):
        updates["type"] = STAR_TRANSACTION
    if not isinstance(row.get("amount"), int):
        updates["amount"] = _as_int(row.get("amount"), 0) or 1
    return updates


async def _update_rows(session: AsyncSession, table: str, key: str, chunk) -> None:
    for row_id, updates in chunk:
        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        await session.execute(
            sql_text(f"UPDATE {table} SET {assignments} WHERE {key} = :row_key"),
            {**updates, "row_key": row_id},
        )


async def fix_users() -> int:
    rows = await _fetch_all(f"SELECT uid, stars, settings_json FROM {USERS_TABLE}")
    pending = []
    for row in rows:
        fixes = user_repairs(row)
        if fixes:
            pending.append((row["uid"], fixes))

    async def op(session: AsyncSession, chunk) -> None:
        await _update_rows(session, USERS_TABLE, "uid", chunk)

    fixed = await apply_in_batches(pending, op)
    logger.info("Fixed %s user rows", fixed)
    return fixed


async def fix_transactions() -> int:
    rows = await _fetch_all(
        f"SELECT id, from_uid, to_uid, amount, type, participants_json, created_at FROM {LEDGER_TABLE}"
    )
    pending = []
    for row in rows:
        fixes = transaction_repairs(row)
        if fixes is None:
            logger.warning("Transaction %s has no from/to fields to create participants", row["id"])
            continue
        if fixes:
            pending.append((row["id"], fixes))

    async def op(session: AsyncSession, chunk) -> None:
        await _update_rows(session, LEDGER_TABLE, "id", chunk)

    fixed = await apply_in_batches(pending, op)
    logger.info("Fixed %s transaction rows", fixed)
    return fixed


async def clean_table(table: str) -> int:
    if table not in CLEANABLE_TABLES:
        raise ValueError(f"Table {table} cannot be cleaned")
    key = _PRIMARY_KEYS.get(table, "id")
    ids = [row[key] for row in await _fetch_all(f"SELECT {key} FROM {table}")]

    async def op(session: AsyncSession, chunk) -> None:
        for row_id in chunk:
            await session.execute(sql_text(f"DELETE FROM {table} WHERE {key} = :row_key"), {"row_key": row_id})

    deleted = await apply_in_batches(ids, op)
    logger.info("Deleted %s rows from %s", deleted, table)
    return deleted


async def _run(args: argparse.Namespace) -> None:
    await init_db()
    try:
        if args.cmd == "fix-users":
            count = await fix_users()
        elif args.cmd == "fix-transactions":
            count = await fix_transactions()
        else:
            count = 0
            for table in args.tables or CLEANABLE_TABLES:
                count += await clean_table(table)
        print(json.dumps({"ok": True, "command": args.cmd, "count": count}))
    finally:
        await dispose_engine()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="together.maintenance", description="Bulk data repair and cleanup")
    sub = parser.add_subparsers(dest="cmd", required=True)
    sub.add_parser("fix-users", help="Ensure numeric stars and default settings on every user")
    sub.add_parser("fix-transactions", help="Backfill participants, type, amount and created_at on ledger rows")
    clean = sub.add_parser("clean", help="Delete every row of the given tables")
    clean.add_argument("tables", nargs="*", metavar="TABLE", help=f"One of: {', '.join(CLEANABLE_TABLES)}")
    return parser


def main(argv: list[str]) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = _build_parser().parse_args(argv)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main(sys.argv[1:])
