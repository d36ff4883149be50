from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest

from conftest import FIXED_NOW, FIXED_TODAY
from together import repositories
from together.errors import CallableError
from together.services import habit_awards
from together.settings import reset_settings


async def _ledger_awards(habit_id: str, uid: str) -> list[dict]:
    return await repositories.list_habit_awards(habit_id, uid)


async def _stars(uid: str) -> int:
    return (await repositories.get_user(uid))["stars"]


def test_award_key_uses_week_start_for_week_window():
    period = habit_awards.award_period(date(2024, 5, 17), FIXED_TODAY, habit_awards.WINDOW_WEEK)
    assert period == date(2024, 5, 12)
    assert habit_awards.award_key("h1", "alice", "week", period) == "h1:alice:week:2024-05-12"


def test_award_period_day_window_is_today():
    assert habit_awards.award_period(date(2024, 5, 13), FIXED_TODAY, habit_awards.WINDOW_DAY) == FIXED_TODAY


async def test_weekly_goal_awards_exactly_one_star(alice):
    habit = await repositories.create_habit("alice", {"title": "Walk", "weekly_goal": 3})

    results = []
    for offset in range(3):
        day = date(2024, 5, 12) + timedelta(days=offset)
        results.append(
            await habit_awards.handle_toggle_status(alice, habit["id"], day, False, today=FIXED_TODAY, now=FIXED_NOW)
        )

    assert [item["starAwarded"] for item in results] == [False, False, True]
    assert results[-1]["weeklyCompletions"] == 3
    assert await _stars("alice") == 1
    awards = await _ledger_awards(habit["id"], "alice")
    assert len(awards) == 1
    assert awards[0]["week_start_date"] == "2024-05-12"
    assert awards[0]["week_end_date"] == "2024-05-18"
    assert awards[0]["reason"] == "Completed weekly goal for Walk"
    stored = await repositories.get_habit(habit["id"])
    assert stored["weekly_star_awarded"] is True
    assert stored["weekly_star_awarded_at"] == FIXED_NOW.isoformat()

    fourth = await habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY)
    assert fourth["weeklyCompletions"] == 4
    assert fourth["starAwarded"] is False
    assert await _stars("alice") == 1
    assert len(await _ledger_awards(habit["id"], "alice")) == 1


async def test_on_off_on_keeps_final_value_without_duplicate_awards(alice):
    habit = await repositories.create_habit("alice", {"title": "Read", "weekly_goal": 1})

    first = await habit_awards.toggle_daily_status(alice, habit["id"], "2024-05-13", True, today=FIXED_TODAY)
    await habit_awards.toggle_daily_status(alice, habit["id"], "2024-05-13", False, today=FIXED_TODAY)
    await habit_awards.toggle_daily_status(alice, habit["id"], "2024-05-13", True, today=FIXED_TODAY)

    assert first["starAwarded"] is True
    statuses = await repositories.list_daily_statuses(habit["id"], "alice")
    assert len(statuses) == 1
    assert statuses[0]["done"] is True
    assert statuses[0]["id"] == f"{habit['id']}_2024-05-13_alice"
    assert len(await _ledger_awards(habit["id"], "alice")) == 1
    assert await _stars("alice") == 1


async def test_untoggling_never_revokes_a_star(alice):
    habit = await repositories.create_habit("alice", {"title": "Stretch", "weekly_goal": 1})
    await habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY)
    await habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)

    assert await _stars("alice") == 1
    assert len(await _ledger_awards(habit["id"], "alice")) == 1


async def test_repeating_the_same_toggle_is_idempotent(alice):
    habit = await repositories.create_habit("alice", {"title": "Floss", "weekly_goal": 7})
    first = await habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY)
    second = await habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY)

    assert first["done"] is True
    assert second["done"] is True
    assert second["weeklyCompletions"] == 1
    assert await repositories.count_daily_statuses(habit["id"], "alice", FIXED_TODAY.isoformat()) == 1


async def test_concurrent_toggles_leave_one_status_row(alice):
    habit = await repositories.create_habit("alice", {"title": "Water", "weekly_goal": 1})

    results = await asyncio.gather(
        habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY),
        habit_awards.handle_toggle_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY),
    )

    assert all(item["done"] for item in results)
    assert await repositories.count_daily_statuses(habit["id"], "alice", FIXED_TODAY.isoformat()) == 1
    assert len(await _ledger_awards(habit["id"], "alice")) == 1
    assert await _stars("alice") == 1


async def test_toggling_today_updates_today_flags(alice):
    habit = await repositories.create_habit("alice", {"title": "Meditate"})
    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)
    stored = await repositories.get_habit(habit["id"])
    assert stored["is_today_complete"] is True
    assert stored["last_completed_at"]

    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY - timedelta(days=1), True, today=FIXED_TODAY)
    assert (await repositories.get_habit(habit["id"]))["is_today_complete"] is True

    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, False, today=FIXED_TODAY)
    stored = await repositories.get_habit(habit["id"])
    assert stored["is_today_complete"] is False
    assert stored["last_completed_at"] is None


async def test_only_the_owner_may_toggle(alice, bob):
    habit = await repositories.create_habit("alice", {"title": "Run"})
    with pytest.raises(CallableError) as excinfo:
        await habit_awards.toggle_daily_status(bob, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)
    assert excinfo.value.code == "permission-denied"
    assert await repositories.list_daily_statuses(habit["id"], "alice") == []


async def test_unknown_habit_and_bad_date(alice):
    with pytest.raises(CallableError) as excinfo:
        await habit_awards.toggle_daily_status(alice, "missing", FIXED_TODAY, True, today=FIXED_TODAY)
    assert excinfo.value.code == "not-found"

    habit = await repositories.create_habit("alice", {"title": "Run"})
    with pytest.raises(CallableError) as excinfo:
        await habit_awards.toggle_daily_status(alice, habit["id"], "not-a-date", True, today=FIXED_TODAY)
    assert excinfo.value.code == "invalid-argument"


async def test_previous_week_award_does_not_set_current_flag(alice):
    habit = await repositories.create_habit("alice", {"title": "Journal", "weekly_goal": 1})
    result = await habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 8), True, today=FIXED_TODAY)

    assert result["starAwarded"] is True
    assert (await repositories.get_habit(habit["id"]))["weekly_star_awarded"] is False
    awards = await _ledger_awards(habit["id"], "alice")
    assert awards[0]["award_key"] == f"{habit['id']}:alice:week:2024-05-05"


async def test_day_window_allows_one_award_per_day(alice, monkeypatch):
    monkeypatch.setenv("AWARD_DEDUP_WINDOW", "day")
    reset_settings()
    habit = await repositories.create_habit("alice", {"title": "Cook", "weekly_goal": 1})

    await habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 13), True, today=FIXED_TODAY)
    await habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 14), True, today=FIXED_TODAY)
    await habit_awards.toggle_daily_status(
        alice, habit["id"], date(2024, 5, 14), True, today=FIXED_TODAY + timedelta(days=1)
    )

    awards = await _ledger_awards(habit["id"], "alice")
    assert [item["award_key"].rsplit(":", 1)[1] for item in awards] == ["2024-05-15", "2024-05-16"]
    assert await _stars("alice") == 2


async def test_evaluator_awards_once_per_period(alice, bob):
    statuses = [{"date": f"2024-05-1{n}", "done": True} for n in range(2, 5)]

    first = await habit_awards.award_weekly_star_if_eligible(
        "habit-1", "alice", "bob", 3, "Yoga", statuses, today=FIXED_TODAY
    )
    second = await habit_awards.award_weekly_star_if_eligible(
        "habit-1", "alice", "bob", 3, "Yoga", statuses, today=FIXED_TODAY
    )

    assert first is True
    assert second is False
    assert await _stars("alice") == 1
    user = await repositories.get_user("alice")
    assert user["last_star_awarded_at"]
    awards = await _ledger_awards("habit-1", "alice")
    assert len(awards) == 1
    entry = awards[0]
    assert entry["from_uid"] == "SYSTEM"
    assert entry["status"] == "approved"
    assert entry["category"] == "habit_completion"
    assert entry["completed_count"] == 3
    assert entry["participants"] == ["alice", "bob"]
    assert entry["reason"] == "Completed goal (3 completions) for habit: Yoga"


async def test_evaluator_and_toggle_share_the_award_key(alice):
    habit = await repositories.create_habit("alice", {"title": "Swim", "weekly_goal": 1})
    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY)

    awarded = await habit_awards.award_weekly_star_if_eligible(
        habit["id"], "alice", None, 1, "Swim", [{"date": FIXED_TODAY.isoformat(), "done": True}], today=FIXED_TODAY
    )

    assert awarded is False
    assert await _stars("alice") == 1


async def test_evaluator_below_goal_writes_nothing(alice):
    awarded = await habit_awards.award_weekly_star_if_eligible(
        "habit-2", "alice", None, 3, "Yoga", [{"date": "2024-05-12", "done": True}], today=FIXED_TODAY
    )
    assert awarded is False
    assert await repositories.count_ledger_entries() == 0


async def test_concurrent_toggles_on_different_days_award_one_star(alice):
    habit = await repositories.create_habit("alice", {"title": "Piano", "weekly_goal": 2})
    await habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 12), True, today=FIXED_TODAY, now=FIXED_NOW)

    results = await asyncio.gather(
        habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 13), True, today=FIXED_TODAY, now=FIXED_NOW),
        habit_awards.toggle_daily_status(alice, habit["id"], date(2024, 5, 14), True, today=FIXED_TODAY, now=FIXED_NOW),
    )

    assert sorted(item["weeklyCompletions"] for item in results) == [2, 3]
    assert [item["starAwarded"] for item in results].count(True) == 1
    assert len(await _ledger_awards(habit["id"], "alice")) == 1
    assert await _stars("alice") == 1


async def test_set_flag_skips_the_award_attempt_this_week(alice, monkeypatch):
    habit = await repositories.create_habit("alice", {"title": "Plank", "weekly_goal": 1})
    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY, now=FIXED_NOW)

    attempts = []

    async def recording_write_award(session, entry):
        attempts.append(entry["award_key"])
        return False

    monkeypatch.setattr(habit_awards, "_write_award", recording_write_award)
    result = await habit_awards.toggle_daily_status(
        alice, habit["id"], FIXED_TODAY - timedelta(days=1), True, today=FIXED_TODAY, now=FIXED_NOW
    )

    assert result["weeklyCompletions"] == 2
    assert result["starAwarded"] is False
    assert attempts == []


async def test_flag_from_last_week_is_reset_and_new_star_earned(alice):
    habit = await repositories.create_habit("alice", {"title": "Garden", "weekly_goal": 1})
    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY, now=FIXED_NOW)
    assert (await repositories.get_habit(habit["id"]))["weekly_star_awarded"] is True

    next_today = FIXED_TODAY + timedelta(days=7)
    next_now = FIXED_NOW + timedelta(days=7)
    result = await habit_awards.toggle_daily_status(
        alice, habit["id"], next_today, True, today=next_today, now=next_now
    )

    assert result["starAwarded"] is True
    stored = await repositories.get_habit(habit["id"])
    assert stored["weekly_star_awarded"] is True
    assert stored["weekly_star_awarded_at"] == next_now.isoformat()
    keys = [item["award_key"] for item in await _ledger_awards(habit["id"], "alice")]
    assert sorted(keys) == [f"{habit['id']}:alice:week:2024-05-12", f"{habit['id']}:alice:week:2024-05-19"]
    assert await _stars("alice") == 2


async def test_stale_flag_is_cleared_even_without_a_new_star(alice):
    habit = await repositories.create_habit("alice", {"title": "Sketch", "weekly_goal": 1})
    await habit_awards.toggle_daily_status(alice, habit["id"], FIXED_TODAY, True, today=FIXED_TODAY, now=FIXED_NOW)
    await repositories.update_habit(habit["id"], {"weekly_goal": 3})

    next_today = FIXED_TODAY + timedelta(days=7)
    result = await habit_awards.toggle_daily_status(
        alice, habit["id"], next_today, True, today=next_today, now=FIXED_NOW + timedelta(days=7)
    )

    assert result["starAwarded"] is False
    assert (await repositories.get_habit(habit["id"]))["weekly_star_awarded"] is False
