from __future__ import annotations

from datetime import date

import pytest

from conftest import auth_headers
from together import repositories
from together.errors import CallableError
from together.services import couple, moods, partners


async def test_set_mood_upserts_one_row_per_day(alice):
    first = await moods.set_mood(alice, "Happy", date(2024, 5, 15), "sunny")
    second = await moods.set_mood(alice, "Relaxed", date(2024, 5, 15))

    assert first["id"] == second["id"] == "alice_2024-05-15"
    assert second["mood"] == "Relaxed"
    assert second["note"] is None
    assert len(await repositories.list_moods("alice")) == 1


async def test_set_mood_rejects_unknown_mood(alice):
    with pytest.raises(CallableError) as excinfo:
        await moods.set_mood(alice, "Hangry", date(2024, 5, 15))
    assert excinfo.value.code == "invalid-argument"


def test_mood_distribution_percentages():
    items = [{"mood": "Happy"}, {"mood": "Happy"}, {"mood": "Sad"}, {"mood": "Happy"}, {"mood": None}]
    assert moods.mood_distribution(items) == [
        {"mood": "Happy", "count": 3, "percentage": 75},
        {"mood": "Sad", "count": 1, "percentage": 25},
    ]
    assert moods.mood_distribution([]) == []


async def test_mood_routes(client, alice, bob):
    for day, mood in [("2024-05-13", "Happy"), ("2024-05-14", "Sad"), ("2024-05-15", "Happy")]:
        response = await client.put("/v1/moods", json={"mood": mood, "date": day}, headers=auth_headers("alice"))
        assert response.status_code == 200

    page = await client.get("/v1/moods", params={"limit": 2}, headers=auth_headers("alice"))
    body = page.json()
    assert [item["date"] for item in body["items"]] == ["2024-05-15", "2024-05-14"]
    assert body["next_before"] == "2024-05-14"

    rest = await client.get("/v1/moods", params={"before": "2024-05-14"}, headers=auth_headers("alice"))
    assert [item["date"] for item in rest.json()["items"]] == ["2024-05-13"]

    distribution = await client.get(
        "/v1/moods/distribution",
        params={"start": "2024-05-01", "end": "2024-05-31"},
        headers=auth_headers("alice"),
    )
    assert distribution.json()["items"][0] == {"mood": "Happy", "count": 2, "percentage": 67}

    bad = await client.put("/v1/moods", json={"mood": "Hangry", "date": "2024-05-15"}, headers=auth_headers("alice"))
    assert bad.status_code == 400

    solo = await client.get("/v1/moods", params={"partner": True}, headers=auth_headers("bob"))
    assert solo.status_code == 400
    assert solo.json()["error"]["code"] == "failed-precondition"


async def test_partner_can_read_moods(client, alice, bob):
    await partners.link_partner_by_email(alice, "bob@example.com")
    await moods.set_mood(alice, "Excited", date(2024, 5, 15))

    response = await client.get("/v1/moods", params={"partner": True}, headers=auth_headers("bob"))
    assert [item["mood"] for item in response.json()["items"]] == ["Excited"]


async def test_messages_require_a_partner(alice):
    with pytest.raises(CallableError) as excinfo:
        await couple.send_message(alice, "hi")
    assert excinfo.value.code == "failed-precondition"


async def test_send_list_and_mark_read(alice, bob):
    await partners.link_partner_by_email(alice, "bob@example.com")

    with pytest.raises(CallableError) as excinfo:
        await couple.send_message(alice, "   ")
    assert excinfo.value.code == "invalid-argument"

    sent = await couple.send_message(alice, " Dinner at 8? ")
    assert sent["text"] == "Dinner at 8?"
    assert sent["receiver_id"] == "bob"
    assert sent["is_read"] is False
    await couple.send_message(bob, "Sure", "text")

    thread = await couple.list_couple_messages(bob)
    assert {item["text"] for item in thread} == {"Dinner at 8?", "Sure"}

    assert await couple.mark_read(bob) == 1
    assert await couple.mark_read(bob) == 0
    thread = await couple.list_couple_messages(alice)
    from_alice = [item for item in thread if item["sender_id"] == "alice"]
    assert from_alice[0]["is_read"] is True
