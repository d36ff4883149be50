from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest

from together import repositories
from together.auth import Caller
from together.db import dispose_engine
from together.db_init import init_db
from together.settings import reset_settings

BACKEND_SECRET = "test-secret"

# Wednesday; its Sunday-Saturday week is 2024-05-12 .. 2024-05-18.
FIXED_TODAY = date(2024, 5, 15)
FIXED_NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def auth_headers(uid: str) -> dict:
    return {"X-User-Id": uid, "X-Backend-Token": BACKEND_SECRET}


@pytest.fixture(autouse=True)
def environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'together.db'}")
    monkeypatch.setenv("BACKEND_SESSION_SECRET", BACKEND_SECRET)
    monkeypatch.setenv("GOOGLE_TOKEN_ENCRYPTION_KEY", "test-encryption-key")
    monkeypatch.setenv("APP_TIMEZONE", "UTC")
    monkeypatch.delenv("AWARD_DEDUP_WINDOW", raising=False)
    monkeypatch.delenv("MAX_STAR_AWARD", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
async def db():
    await init_db()
    yield
    await dispose_engine()


@pytest.fixture
async def alice(db):
    await repositories.upsert_user("alice", "alice@example.com", "Alice")
    return Caller(uid="alice")


@pytest.fixture
async def bob(db):
    await repositories.upsert_user("bob", "bob@example.com", "Bob")
    return Caller(uid="bob")


@pytest.fixture
async def client(db):
    from together.main import create_app

    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
