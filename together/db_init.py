from __future__ import annotations

import logging

from sqlalchemy import text as sql_text
from sqlalchemy.exc import DBAPIError

from together.db import get_engine

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
HABITS_TABLE = "accountability"
DAILY_STATUS_TABLE = "daily_status"
LEDGER_TABLE = "transactions"
REMINDERS_TABLE = "reminders"
MOODS_TABLE = "moods"
MESSAGES_TABLE = "messages"
COUPONS_TABLE = "coupons"
CALENDAR_EVENTS_TABLE = "calendar_events"
ADMINS_TABLE = "admins"
GOOGLE_TOKENS_TABLE = "google_calendar_tokens"
SYNC_CURSOR_TABLE = "google_sync_cursor"
SYNC_OUTBOX_TABLE = "sync_outbox"

# Tables an admin may wipe through cleanupCollection / the maintenance CLI.
CLEANABLE_TABLES = [
    USERS_TABLE,
    LEDGER_TABLE,
    MESSAGES_TABLE,
    COUPONS_TABLE,
    HABITS_TABLE,
    DAILY_STATUS_TABLE,
    REMINDERS_TABLE,
    MOODS_TABLE,
    CALENDAR_EVENTS_TABLE,
    ADMINS_TABLE,
]

_TABLES_DDL = [
    f"""
    CREATE TABLE IF NOT EXISTS {USERS_TABLE} (
        uid TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        display_name TEXT,
        stars INTEGER DEFAULT 0,
        partner_id TEXT,
        settings_json TEXT,
        last_star_awarded_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        deleted_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {HABITS_TABLE} (
        id TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT DEFAULT '',
        weekly_goal INTEGER DEFAULT 7,
        weekly_star_awarded INTEGER DEFAULT 0,
        weekly_star_awarded_at TEXT,
        is_today_complete INTEGER DEFAULT 0,
        last_completed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DAILY_STATUS_TABLE} (
        id TEXT PRIMARY KEY,
        habit_id TEXT NOT NULL,
        owner TEXT NOT NULL,
        partner_id TEXT,
        date TEXT NOT NULL,
        done INTEGER DEFAULT 0,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (habit_id, owner, date)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
        id TEXT PRIMARY KEY,
        from_uid TEXT NOT NULL,
        to_uid TEXT,
        owner TEXT,
        amount INTEGER NOT NULL,
        type TEXT NOT NULL,
        reason TEXT,
        category TEXT,
        participants_json TEXT NOT NULL,
        status TEXT,
        habit_id TEXT,
        completed_count INTEGER,
        week_start_date TEXT,
        week_end_date TEXT,
        coupon_id TEXT,
        award_key TEXT UNIQUE,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {REMINDERS_TABLE} (
        id TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT DEFAULT '',
        category TEXT DEFAULT 'personal',
        date TEXT NOT NULL,
        completed INTEGER DEFAULT 0,
        participants_json TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {MOODS_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        date TEXT NOT NULL,
        mood TEXT NOT NULL,
        note TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        UNIQUE (user_id, date)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {MESSAGES_TABLE} (
        id TEXT PRIMARY KEY,
        sender_id TEXT NOT NULL,
        receiver_id TEXT NOT NULL,
        text TEXT NOT NULL,
        type TEXT DEFAULT 'text',
        is_read INTEGER DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {COUPONS_TABLE} (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT DEFAULT '',
        star_cost INTEGER DEFAULT 5,
        color TEXT,
        from_user TEXT NOT NULL,
        for_user TEXT NOT NULL,
        used INTEGER DEFAULT 0,
        redeemed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {CALENDAR_EVENTS_TABLE} (
        id TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT DEFAULT '',
        start_at TEXT NOT NULL,
        end_at TEXT,
        all_day INTEGER DEFAULT 0,
        source TEXT DEFAULT 'manual',
        google_calendar_id TEXT,
        google_event_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {ADMINS_TABLE} (
        uid TEXT PRIMARY KEY,
        granted_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {GOOGLE_TOKENS_TABLE} (
        user_id TEXT PRIMARY KEY,
        refresh_token_enc TEXT NOT NULL,
        access_token TEXT,
        expires_at TEXT,
        scope TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SYNC_CURSOR_TABLE} (
        user_id TEXT NOT NULL,
        calendar_id TEXT NOT NULL,
        sync_token TEXT,
        last_synced_at TEXT,
        last_error TEXT,
        PRIMARY KEY (user_id, calendar_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SYNC_OUTBOX_TABLE} (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        action TEXT NOT NULL,
        payload_json TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER DEFAULT 0,
        next_retry_at TEXT,
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]

_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_{HABITS_TABLE}_owner ON {HABITS_TABLE} (owner)",
    f"CREATE INDEX IF NOT EXISTS idx_{DAILY_STATUS_TABLE}_week ON {DAILY_STATUS_TABLE} (habit_id, owner, date)",
    f"CREATE INDEX IF NOT EXISTS idx_{LEDGER_TABLE}_to_type ON {LEDGER_TABLE} (to_uid, type, created_at)",
    f"CREATE INDEX IF NOT EXISTS idx_{REMINDERS_TABLE}_owner_date ON {REMINDERS_TABLE} (owner, date)",
    f"CREATE INDEX IF NOT EXISTS idx_{MESSAGES_TABLE}_pair ON {MESSAGES_TABLE} (sender_id, receiver_id, created_at)",
    f"CREATE INDEX IF NOT EXISTS idx_{CALENDAR_EVENTS_TABLE}_google_lookup "
    f"ON {CALENDAR_EVENTS_TABLE} (owner, google_calendar_id, google_event_id)",
    f"CREATE INDEX IF NOT EXISTS idx_{SYNC_OUTBOX_TABLE}_status ON {SYNC_OUTBOX_TABLE} (user_id, status, next_retry_at)",
]


async def init_db():
    engine = get_engine()
    async with engine.begin() as conn:
        for ddl in _TABLES_DDL:
            await conn.execute(sql_text(ddl))

    async def ensure_index(index_sql: str) -> None:
        try:
            async with engine.begin() as conn:
                await conn.execute(sql_text(index_sql))
        except DBAPIError as exc:
            logger.warning("Index creation skipped: %s", exc)

    for index_sql in _INDEXES:
        await ensure_index(index_sql)
