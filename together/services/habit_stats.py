from __future__ import annotations

from collections import Counter
from datetime import date, timedelta

from together.timeutil import week_bounds


def _day(value) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])


def _done_days(statuses: list[dict]) -> set[date]:
    return {_day(item["date"]) for item in statuses if item.get("done")}


def calculate_longest_streak(statuses: list[dict]) -> int:
    longest = 0
    current = 0
    last_day = None
    for item in sorted(statuses, key=lambda s: _day(s["date"])):
        day = _day(item["date"])
        if item.get("done"):
            if last_day is not None and (day - last_day).days == 1:
                current += 1
            else:
                current = 1
            longest = max(longest, current)
        else:
            current = 0
        last_day = day
    return longest


def calculate_streak(statuses: list[dict], is_today_complete: bool, today: date) -> dict:
    """Current run of done days ending today (or yesterday when today is still open)."""
    if not statuses and not is_today_complete:
        return {"current_streak": 0, "longest_streak": 0}
    done = _done_days(statuses)
    if is_today_complete:
        done.add(today)
    cursor = today if today in done else today - timedelta(days=1)
    current = 0
    while cursor in done:
        current += 1
        cursor -= timedelta(days=1)
    return {"current_streak": current, "longest_streak": max(calculate_longest_streak(statuses), current)}


def calculate_completion_rate(statuses: list[dict], is_today_complete: bool, today: date) -> int:
    if not statuses:
        return 0
    cutoff = today - timedelta(days=30)
    recent = [item for item in statuses if _day(item["date"]) >= cutoff]
    pool = recent or statuses
    total = len(pool)
    completed = sum(1 for item in pool if item.get("done"))
    if not any(_day(item["date"]) == today for item in pool):
        total += 1
        if is_today_complete:
            completed += 1
    return round(completed / total * 100) if total else 0


def calculate_best_days(statuses: list[dict]) -> list[dict]:
    counts = Counter(_day(item["date"]).strftime("%A") for item in statuses if item.get("done"))
    return [{"day": day, "count": count} for day, count in counts.most_common(3)]


def calculate_monthly_trend(statuses: list[dict], today: date) -> float:
    """Percentage-point change of this month's completion rate against last month."""
    if not statuses:
        return 0.0
    month_start = today.replace(day=1)
    last_month_end = month_start - timedelta(days=1)
    last_month_start = last_month_end.replace(day=1)
    done = _done_days(statuses)
    current = sum(1 for day in done if month_start <= day <= today)
    previous = sum(1 for day in done if last_month_start <= day <= last_month_end)
    current_rate = current / ((today - month_start).days + 1) * 100
    previous_rate = previous / last_month_end.day * 100
    return round(current_rate - previous_rate, 1)


def calculate_weekly_completions(day: date, statuses: list[dict]) -> int:
    start, end = week_bounds(day)
    return sum(1 for item in statuses if item.get("done") and start <= _day(item["date"]) <= end)


def weekly_progress(habits: list[dict], statuses_by_habit: dict, today: date) -> dict:
    total_completions = 0
    total_goal = 0
    for habit in habits:
        total_completions += calculate_weekly_completions(today, statuses_by_habit.get(habit["id"], []))
        total_goal += int(habit.get("weekly_goal") or 7)
    progress = min(round(total_completions / total_goal * 100), 100) if total_goal else 0
    return {"weekly_progress": progress, "weekly_completions": total_completions}


def habit_stats(habit: dict, statuses: list[dict], today: date) -> dict:
    is_today_complete = bool(habit.get("is_today_complete"))
    return {
        **calculate_streak(statuses, is_today_complete, today),
        "completion_rate": calculate_completion_rate(statuses, is_today_complete, today),
        "best_days": calculate_best_days(statuses),
        "monthly_trend": calculate_monthly_trend(statuses, today),
        "weekly_completions": calculate_weekly_completions(today, statuses),
        "weekly_goal": int(habit.get("weekly_goal") or 7),
    }
