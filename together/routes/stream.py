from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from together import repositories
from together.auth import Caller, require_caller
from together.services import couple, habits
from together.services.streams import sse_events, subscribe
from together.timeutil import today, week_bounds

router = APIRouter()


def _event_stream(loader) -> StreamingResponse:
    return StreamingResponse(
        sse_events(subscribe(loader)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/v1/stream/habits/{habit_id}")
async def stream_habit(habit_id: str, caller: Caller = Depends(require_caller)):
    await habits.load_habit(caller, habit_id, allow_partner=True)

    async def load():
        habit = await repositories.get_habit(habit_id)
        if not habit:
            return {"habit": None, "statuses": []}
        start, end = week_bounds(today())
        statuses = await repositories.list_daily_statuses(
            habit_id, habit["owner"], start.isoformat(), end.isoformat()
        )
        return {"habit": habit, "statuses": statuses}

    return _event_stream(load)


@router.get("/v1/stream/stars")
async def stream_stars(caller: Caller = Depends(require_caller)):
    async def load():
        user = await repositories.get_user(caller.uid)
        return {
            "stars": (user or {}).get("stars", 0),
            "ledger": await repositories.list_ledger(caller.uid, limit=10),
        }

    return _event_stream(load)


@router.get("/v1/stream/reminders")
async def stream_reminders(caller: Caller = Depends(require_caller)):
    async def load():
        return {"items": await repositories.list_reminders(caller.uid)}

    return _event_stream(load)


@router.get("/v1/stream/messages")
async def stream_messages(caller: Caller = Depends(require_caller)):
    await couple.list_couple_messages(caller, limit=1)

    async def load():
        return {"items": await couple.list_couple_messages(caller, limit=50)}

    return _event_stream(load)
