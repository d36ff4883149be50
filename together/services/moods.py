from __future__ import annotations

from collections import Counter
from datetime import date

from together import repositories
from together.auth import Caller
from together.errors import CallableError, INVALID_ARGUMENT

MOOD_TYPES = [
    "Happy",
    "Productive",
    "Disappointed",
    "Angry",
    "Stressed",
    "Sad",
    "Neutral",
    "Sick",
    "Relaxed",
    "Lazy",
    "Depressed",
    "Excited",
]


async def set_mood(caller: Caller, mood: str, day: date, note: str | None = None) -> dict:
    if mood not in MOOD_TYPES:
        raise CallableError(INVALID_ARGUMENT, f"Unknown mood: {mood}")
    return await repositories.upsert_mood(caller.uid, day.isoformat(), mood, note)


def mood_distribution(moods: list[dict]) -> list[dict]:
    counts = Counter(item["mood"] for item in moods if item.get("mood"))
    total = sum(counts.values())
    return [
        {"mood": mood, "count": count, "percentage": round(count / total * 100)}
        for mood, count in counts.most_common()
    ]
