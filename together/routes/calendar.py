from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query

from together import repositories
from together.auth import Caller, require_caller
from together.errors import CallableError, NOT_FOUND
from together.schemas import EventCreate, EventPatch
from together.services import google_calendar_service
from together.workers.sync_worker import EVENT_ENTITY, process_outbox_once

router = APIRouter()


@router.get("/v1/calendar/events")
async def list_events(
    start: date = Query(...),
    end: date | None = Query(None),
    caller: Caller = Depends(require_caller),
):
    end = end or start + timedelta(days=7)
    items = await repositories.list_events(caller.uid, start.isoformat(), end.isoformat())
    return {"items": items}


@router.post("/v1/calendar/events")
async def create_event(payload: EventCreate, caller: Caller = Depends(require_caller)):
    data = payload.model_dump(exclude={"sync_to_google"})
    event = await repositories.create_event(caller.uid, data)
    if payload.sync_to_google:
        await repositories.enqueue_outbox(caller.uid, EVENT_ENTITY, event["id"], "create")
    return event


@router.patch("/v1/calendar/events/{event_id}")
async def update_event(event_id: str, payload: EventPatch, caller: Caller = Depends(require_caller)):
    existing = await repositories.get_event(caller.uid, event_id)
    if not existing:
        raise CallableError(NOT_FOUND, "Event not found")
    event = await repositories.update_event(caller.uid, event_id, payload.model_dump(exclude_none=True))
    if event.get("google_event_id"):
        await repositories.enqueue_outbox(caller.uid, EVENT_ENTITY, event_id, "update")
    return event


@router.delete("/v1/calendar/events/{event_id}")
async def delete_event(event_id: str, caller: Caller = Depends(require_caller)):
    existing = await repositories.get_event(caller.uid, event_id)
    if not existing:
        raise CallableError(NOT_FOUND, "Event not found")
    await repositories.delete_event(caller.uid, event_id)
    if existing.get("google_event_id"):
        await repositories.enqueue_outbox(
            caller.uid,
            EVENT_ENTITY,
            event_id,
            "delete",
            {
                "google_calendar_id": existing.get("google_calendar_id"),
                "google_event_id": existing.get("google_event_id"),
            },
        )
    return {"ok": True}


@router.post("/v1/calendar/sync/run")
async def trigger_sync(caller: Caller = Depends(require_caller)):
    pulled = await google_calendar_service.sync_calendars(caller.uid)
    # If no background worker is running, drain a small batch of pending outbox items here.
    drained = await process_outbox_once(limit=10)
    return {"ok": True, **pulled, "outbox_drained": drained}
