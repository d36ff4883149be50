from __future__ import annotations

import pytest

from conftest import FIXED_TODAY, auth_headers
from together import repositories
from together.errors import CallableError
from together.services import account, couple, habit_awards, partners, stars


async def test_delete_account_removes_data_and_unlinks_partner(alice, bob):
    await partners.link_partner_by_email(alice, "bob@example.com")
    await couple.send_message(alice, "hi")
    await couple.send_message(bob, "hey")
    await repositories.create_coupon("bob", "alice", {"title": "Dinner"})
    await stars.award_stars(bob, "alice", 2)
    alice_habit = await repositories.create_habit("alice", {"title": "Run", "weekly_goal": 1})
    await habit_awards.toggle_daily_status(alice, alice_habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)
    bob_habit = await repositories.create_habit("bob", {"title": "Swim", "weekly_goal": 7})
    await habit_awards.toggle_daily_status(bob, bob_habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)
    await repositories.create_reminder("alice", {"title": "Milk", "date": "2024-05-15"})
    await repositories.create_reminder("bob", {"title": "Bread", "date": "2024-05-15"})
    await repositories.upsert_mood("alice", "2024-05-15", "happy")
    await repositories.upsert_mood("bob", "2024-05-15", "calm")
    await repositories.create_event("alice", {"title": "Trip", "start_at": "2024-05-20"})
    await repositories.set_admin("alice", True)

    result = await account.delete_account(alice)

    # 2 messages, 1 coupon, 2 ledger rows, 1 habit, 2 statuses, 1 reminder, 1 mood, 1 event
    assert result == {"success": True, "deleted": 11}
    me = await repositories.get_user("alice")
    them = await repositories.get_user("bob")
    assert me["deleted_at"]
    assert me["partner_id"] is None
    assert me["settings"]["mode"] == "SOLO"
    assert them["partner_id"] is None
    assert them["settings"]["mode"] == "SOLO"

    assert await repositories.list_habits("alice") == []
    assert await repositories.list_moods("alice") == []
    assert await repositories.list_reminders("alice") == []
    assert await repositories.list_coupons("bob") == []
    assert await repositories.list_messages("alice", "bob") == []
    assert await repositories.count_ledger_entries() == 0
    assert await repositories.list_daily_statuses(bob_habit["id"], "bob") == []
    assert not await repositories.is_admin("alice")

    assert [item["id"] for item in await repositories.list_habits("bob")] == [bob_habit["id"]]
    assert [item["title"] for item in await repositories.list_reminders("bob")] == ["Bread"]
    assert len(await repositories.list_moods("bob")) == 1


async def test_deleted_account_cannot_be_deleted_or_linked_again(alice, bob):
    await account.delete_account(alice)

    with pytest.raises(CallableError) as excinfo:
        await account.delete_account(alice)
    assert excinfo.value.code == "not-found"

    with pytest.raises(CallableError) as excinfo:
        await partners.link_partner_by_email(bob, "alice@example.com")
    assert excinfo.value.code == "not-found"


async def test_delete_account_leaves_other_participants_rows(alice, bob):
    await repositories.upsert_user("carol", "carol@example.com")
    await stars.award_stars(bob, "carol", 1)

    await account.delete_account(alice)

    assert await repositories.count_ledger_entries() == 1
    assert (await repositories.get_user("carol"))["stars"] == 1


async def test_delete_me_route(client, alice):
    headers = auth_headers("alice")
    deleted = await client.delete("/v1/users/me", headers=headers)
    assert deleted.json() == {"success": True, "deleted": 0}

    me = await client.get("/v1/users/me", headers=headers)
    assert me.status_code == 404
