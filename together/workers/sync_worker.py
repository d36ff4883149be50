from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from together import repositories
from together.services import google_calendar_service

logger = logging.getLogger(__name__)

EVENT_ENTITY = "calendar_event"


def build_event_payload(event: dict, timezone_name: str) -> dict:
    payload = {"summary": event.get("title") or "Untitled event"}
    if event.get("description"):
        payload["description"] = event["description"]
    start_at = event.get("start_at")
    if not start_at:
        return payload
    if event.get("all_day"):
        start_day = str(start_at)[:10]
        end_day = str(event.get("end_at") or "")[:10]
        if not end_day or end_day <= start_day:
            end_day = (datetime.fromisoformat(start_day) + timedelta(days=1)).strftime("%Y-%m-%d")
        payload["start"] = {"date": start_day}
        payload["end"] = {"date": end_day}
        return payload
    start_dt = datetime.fromisoformat(str(start_at).replace("Z", "+00:00"))
    if start_dt.tzinfo is None:
        try:
            start_dt = start_dt.replace(tzinfo=ZoneInfo(timezone_name))
        except ZoneInfoNotFoundError:
            pass
    if event.get("end_at"):
        end_dt = datetime.fromisoformat(str(event["end_at"]).replace("Z", "+00:00"))
        if end_dt.tzinfo is None and start_dt.tzinfo is not None:
            end_dt = end_dt.replace(tzinfo=start_dt.tzinfo)
    else:
        end_dt = start_dt + timedelta(minutes=30)
    payload["start"] = {"dateTime": start_dt.isoformat(), "timeZone": timezone_name}
    payload["end"] = {"dateTime": end_dt.isoformat(), "timeZone": timezone_name}
    return payload


async def _handle_event_outbox(row: dict) -> None:
    uid = row["user_id"]
    action = row["action"]
    payload = json.loads(row.get("payload_json") or "{}")
    event_id = row.get("entity_id")

    if action == "delete":
        google_event_id = payload.get("google_event_id")
        if google_event_id:
            calendar_id = payload.get("google_calendar_id") or "primary"
            await google_calendar_service.delete_event(uid, calendar_id, google_event_id)
        return

    event = await repositories.get_event(uid, event_id)
    if not event:
        return
    calendar_id = event.get("google_calendar_id") or "primary"

    if action == "create":
        if event.get("google_event_id"):
            return
        tz_name = await google_calendar_service.resolve_calendar_timezone(uid, calendar_id)
        created = await google_calendar_service.create_event(uid, calendar_id, build_event_payload(event, tz_name))
        await repositories.update_event(
            uid,
            event_id,
            {"google_calendar_id": calendar_id, "google_event_id": created.get("id")},
        )
        return

    if action == "update":
        if not event.get("google_event_id"):
            return
        tz_name = await google_calendar_service.resolve_calendar_timezone(uid, calendar_id)
        await google_calendar_service.update_event(
            uid,
            calendar_id,
            event["google_event_id"],
            build_event_payload(event, tz_name),
        )


def retry_delay_seconds(attempts: int) -> int:
    return min(300, 2 ** min(attempts, 8))


async def process_outbox_once(limit: int = 25) -> int:
    rows = await repositories.list_pending_outbox(limit=limit)
    if not rows:
        return 0
    for row in rows:
        try:
            if row.get("entity_type") == EVENT_ENTITY:
                await _handle_event_outbox(row)
            await repositories.mark_outbox_done(row["id"])
        except Exception as exc:
            attempts = int(row.get("attempts") or 0) + 1
            next_retry_at = (datetime.now(timezone.utc) + timedelta(seconds=retry_delay_seconds(attempts))).isoformat()
            logger.warning("Outbox item %s failed (attempt %s): %s", row["id"], attempts, exc)
            await repositories.mark_outbox_error(row["id"], attempts, next_retry_at, str(exc))
    return len(rows)


async def run_forever() -> None:
    while True:
        await process_outbox_once(limit=25)
        await asyncio.sleep(5)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    asyncio.run(run_forever())
