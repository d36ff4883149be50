from __future__ import annotations

import pytest

from conftest import auth_headers
from together import functions, repositories
from together.timeutil import parse_timestamp, today


async def _call(client, name: str, data: dict, uid: str | None = "alice"):
    headers = auth_headers(uid) if uid else {}
    return await client.post(f"/v1/callables/{name}", json={"data": data}, headers=headers)


def test_every_callable_is_registered():
    assert set(functions.CALLABLES) == {
        "toggleReminder",
        "createReminder",
        "updateReminder",
        "deleteReminder",
        "awardStars",
        "toggleDailyStatus",
        "linkPartner",
        "unlinkPartner",
        "deleteAccount",
        "redeemCoupon",
        "setupFirstAdmin",
        "setAdmin",
        "cleanupCollection",
    }


async def test_unauthenticated_calls_are_rejected(client):
    response = await _call(client, "createReminder", {"title": "Milk", "date": "2024-05-15"}, uid=None)
    assert response.status_code == 401
    assert response.json()["error"] == {
        "status": "UNAUTHENTICATED",
        "code": "unauthenticated",
        "message": "Authentication required",
    }


async def test_wrong_backend_token_is_unauthenticated(client, alice):
    response = await client.post(
        "/v1/callables/createReminder",
        json={"data": {"title": "Milk", "date": "2024-05-15"}},
        headers={"X-User-Id": "alice", "X-Backend-Token": "nope"},
    )
    assert response.status_code == 401


async def test_unknown_callable(client, alice):
    response = await _call(client, "doesNotExist", {})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not-found"


async def test_reminder_lifecycle(client, alice):
    created = await _call(client, "createReminder", {"title": "  Call mom ", "date": "2024-05-20", "category": "social"})
    assert created.status_code == 200
    reminder_id = created.json()["result"]["id"]
    assert created.json()["result"]["success"] is True

    stored = await repositories.get_reminder(reminder_id)
    assert stored["title"] == "Call mom"
    assert stored["owner"] == "alice"
    assert stored["participants"] == ["alice"]
    assert stored["completed"] is False

    toggled = await _call(client, "toggleReminder", {"reminderId": reminder_id, "completed": True})
    assert toggled.json() == {"result": {"success": True}}
    assert (await repositories.get_reminder(reminder_id))["completed"] is True

    updated = await _call(client, "updateReminder", {"id": reminder_id, "title": "Call dad"})
    assert updated.status_code == 200
    assert (await repositories.get_reminder(reminder_id))["title"] == "Call dad"

    deleted = await _call(client, "deleteReminder", {"id": reminder_id})
    assert deleted.status_code == 200
    assert await repositories.get_reminder(reminder_id) is None


@pytest.mark.parametrize(
    "data",
    [
        {"date": "2024-05-20"},
        {"title": "Milk"},
        {"title": "", "date": "2024-05-20"},
        {"title": "Milk", "date": "2024-05-20", "category": "chores"},
    ],
)
async def test_create_reminder_validation(client, alice, data):
    response = await _call(client, "createReminder", data)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid-argument"


async def test_toggle_reminder_requires_boolean(client, alice):
    reminder = await repositories.create_reminder("alice", {"title": "Milk", "date": "2024-05-20"})
    response = await _call(client, "toggleReminder", {"reminderId": reminder["id"], "completed": "yes"})
    assert response.status_code == 400


async def test_other_users_reminder_is_untouchable(client, alice, bob):
    reminder = await repositories.create_reminder("bob", {"title": "Gym", "date": "2024-05-20"})

    for name, data in [
        ("updateReminder", {"id": reminder["id"], "title": "Hacked"}),
        ("deleteReminder", {"id": reminder["id"]}),
        ("toggleReminder", {"reminderId": reminder["id"], "completed": True}),
    ]:
        response = await _call(client, name, data)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "permission-denied"

    stored = await repositories.get_reminder(reminder["id"])
    assert stored["title"] == "Gym"
    assert stored["completed"] is False


async def test_missing_reminder_is_not_found(client, alice):
    response = await _call(client, "deleteReminder", {"id": "nope"})
    assert response.status_code == 404


async def test_award_stars_credits_recipient(client, alice, bob):
    response = await _call(client, "awardStars", {"toUserId": "bob", "amount": 3, "reason": "Dinner"})
    assert response.json() == {"result": {"success": True}}
    assert (await repositories.get_user("bob"))["stars"] == 3

    entries = await repositories.list_ledger("bob")
    assert len(entries) == 1
    assert entries[0]["type"] == "AWARD"
    assert entries[0]["from_uid"] == "alice"
    assert entries[0]["to_uid"] == "bob"
    assert entries[0]["reason"] == "Dinner"
    assert entries[0]["participants"] == ["alice", "bob"]


@pytest.mark.parametrize("amount", [-5, 0, 1.5, "3", True, 101])
async def test_award_stars_rejects_bad_amounts(client, alice, bob, amount):
    response = await _call(client, "awardStars", {"toUserId": "bob", "amount": amount})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid-argument"
    assert (await repositories.get_user("bob"))["stars"] == 0
    assert await repositories.count_ledger_entries() == 0


async def test_award_stars_unknown_recipient(client, alice):
    response = await _call(client, "awardStars", {"toUserId": "ghost", "amount": 1})
    assert response.status_code == 404
    assert await repositories.count_ledger_entries() == 0


async def test_toggle_daily_status_end_to_end(client, alice):
    habit = await repositories.create_habit("alice", {"title": "Walk", "weekly_goal": 7})
    day = today().isoformat()

    response = await _call(client, "toggleDailyStatus", {"habitId": habit["id"], "date": day, "done": True})
    assert response.json() == {"result": {"success": True}}
    after_on = await repositories.get_habit(habit["id"])
    assert after_on["is_today_complete"] is True
    assert parse_timestamp(after_on["updated_at"]) > parse_timestamp(habit["updated_at"])

    response = await _call(client, "toggleDailyStatus", {"habitId": habit["id"], "date": day, "done": False})
    assert response.status_code == 200
    after_off = await repositories.get_habit(habit["id"])
    assert after_off["is_today_complete"] is False
    assert parse_timestamp(after_off["updated_at"]) >= parse_timestamp(after_on["updated_at"])
    assert await repositories.count_ledger_entries() == 0
    assert (await repositories.get_user("alice"))["stars"] == 0


async def test_toggle_daily_status_errors(client, alice, bob):
    habit = await repositories.create_habit("bob", {"title": "Run"})

    missing = await _call(client, "toggleDailyStatus", {"habitId": habit["id"], "date": "2024-05-15"})
    assert missing.status_code == 400

    foreign = await _call(client, "toggleDailyStatus", {"habitId": habit["id"], "date": "2024-05-15", "done": True})
    assert foreign.status_code == 403

    unknown = await _call(client, "toggleDailyStatus", {"habitId": "nope", "date": "2024-05-15", "done": True})
    assert unknown.status_code == 404


async def test_unexpected_failures_become_internal(monkeypatch, alice):
    async def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(functions.reminders, "toggle_reminder", explode)
    with pytest.raises(functions.CallableError) as excinfo:
        await functions.dispatch("toggleReminder", alice, {"reminderId": "r1", "completed": True})
    assert excinfo.value.code == "internal"
