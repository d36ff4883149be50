from __future__ import annotations

from conftest import auth_headers
from together.timeutil import today


async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"ok": True}


async def test_profile_and_settings(client, alice):
    me = await client.get("/v1/users/me", headers=auth_headers("alice"))
    body = me.json()
    assert body["uid"] == "alice"
    assert body["is_admin"] is False
    assert "messages" not in body["features"]

    patched = await client.patch(
        "/v1/users/me/settings",
        json={"emailNotifications": False, "mode": "PARTNER"},
        headers=auth_headers("alice"),
    )
    settings = patched.json()["settings"]
    assert settings["emailNotifications"] is False
    assert settings["mode"] == "SOLO"

    missing = await client.get("/v1/users/me", headers=auth_headers("ghost"))
    assert missing.status_code == 404


async def test_requires_authentication(client, alice):
    response = await client.get("/v1/stars/balance")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthenticated"


async def test_habit_toggle_flow(client, alice):
    headers = auth_headers("alice")
    created = await client.post("/v1/habits", json={"title": "Stretch", "weekly_goal": 1}, headers=headers)
    habit_id = created.json()["id"]
    day = today().isoformat()

    toggled = await client.post(f"/v1/habits/{habit_id}/toggle", json={"date": day}, headers=headers)
    body = toggled.json()
    assert body["done"] is True
    assert body["weeklyCompletions"] == 1
    assert body["starAwarded"] is True

    again = await client.post(f"/v1/habits/{habit_id}/toggle", json={"date": day}, headers=headers)
    assert again.json()["starAwarded"] is False

    balance = await client.get("/v1/stars/balance", headers=headers)
    assert balance.json() == {"stars": 1}

    statuses = await client.get(f"/v1/habits/{habit_id}/statuses", headers=headers)
    assert [item["date"] for item in statuses.json()["items"]] == [day]

    progress = await client.get("/v1/habits/progress/week", headers=headers)
    assert progress.json()["weekly_progress"] == 100

    stats = await client.get(f"/v1/habits/{habit_id}/stats", headers=headers)
    assert stats.json()["current_streak"] == 1

    ledger = await client.get("/v1/stars/ledger", headers=headers)
    assert ledger.json()["items"][0]["category"] == "habit_completion"


async def test_habit_routes_enforce_ownership(client, alice, bob):
    created = await client.post("/v1/habits", json={"title": "Read"}, headers=auth_headers("alice"))
    habit_id = created.json()["id"]

    response = await client.post(
        f"/v1/habits/{habit_id}/toggle", json={"date": today().isoformat()}, headers=auth_headers("bob")
    )
    assert response.status_code == 403

    deleted = await client.delete(f"/v1/habits/{habit_id}", headers=auth_headers("bob"))
    assert deleted.status_code in (403, 404)

    bad = await client.post("/v1/habits", json={"title": "Read", "weekly_goal": 9}, headers=auth_headers("alice"))
    assert bad.status_code == 422
