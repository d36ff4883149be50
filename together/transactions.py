from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from together.db import get_engine, get_sessionmaker
from together.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _is_retryable(exc: DBAPIError) -> bool:
    if isinstance(exc, (IntegrityError, OperationalError)):
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in RETRYABLE_SQLSTATES


async def run_transaction(
    work: Callable[[AsyncSession], Awaitable[T]],
    max_attempts: int | None = None,
) -> T:
    """Run ``work`` inside one database transaction, retrying on contention.

    ``work`` receives the session and may be called more than once, so it must
    derive everything it writes from what it reads inside the transaction.
    """
    attempts = max_attempts or get_settings().transaction_max_attempts
    session_factory = get_sessionmaker()
    # SQLite transactions already hold the write lock from BEGIN IMMEDIATE.
    isolation = None if get_engine().dialect.name == "sqlite" else {"isolation_level": "SERIALIZABLE"}
    for attempt in range(1, attempts + 1):
        async with session_factory() as session:
            try:
                async with session.begin():
                    await session.connection(execution_options=isolation)
                    return await work(session)
            except DBAPIError as exc:
                if attempt >= attempts or not _is_retryable(exc):
                    raise
                logger.warning("Transaction conflict (attempt %s/%s): %s", attempt, attempts, exc)
        await asyncio.sleep(0.05 * attempt)
    raise RuntimeError("Transaction retries exhausted")
