from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode, quote

import httpx
from cryptography.fernet import Fernet

from together import repositories
from together.settings import get_settings

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleCalendarError(RuntimeError):
    pass


def _fernet() -> Fernet:
    settings = get_settings()
    digest = hashlib.sha256(settings.google_token_encryption_key.encode("utf-8")).digest()
    key = base64.urlsafe_b64encode(digest)
    return Fernet(key)


def encrypt_token(value: str) -> str:
    return _fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_token(value: str) -> str:
    return _fernet().decrypt(value.encode("utf-8")).decode("utf-8")


def _state_signature(uid: str) -> str:
    secret = get_settings().backend_session_secret.encode("utf-8")
    return hmac.new(secret, uid.encode("utf-8"), hashlib.sha256).hexdigest()[:32]


def sign_state(uid: str) -> str:
    return f"{uid}.{_state_signature(uid)}"


def verify_state(state: str) -> str | None:
    uid, _, signature = str(state or "").rpartition(".")
    if not uid or not hmac.compare_digest(signature, _state_signature(uid)):
        return None
    return uid


def build_connect_url(uid: str) -> str:
    settings = get_settings()
    params = {
        "client_id": settings.calendar_client_id,
        "redirect_uri": settings.calendar_redirect_uri,
        "response_type": "code",
        "scope": "https://www.googleapis.com/auth/calendar",
        "access_type": "offline",
        "include_granted_scopes": "true",
        "prompt": "consent",
        "state": sign_state(uid),
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _expires_at(token_data: dict) -> str:
    expires_in = int(token_data.get("expires_in", 3600) or 3600)
    return (datetime.now(timezone.utc) + timedelta(seconds=expires_in - 30)).isoformat()


def _raise_for_google_error(response: httpx.Response, label: str) -> None:
    if response.status_code < 400:
        return
    try:
        payload = response.json()
        message = payload.get("error", {}).get("message") or payload.get("message") or response.text
    except ValueError:
        message = response.text
    raise GoogleCalendarError(f"{label} ({response.status_code}): {message}")


async def exchange_code_for_tokens(uid: str, code: str) -> None:
    settings = get_settings()
    payload = {
        "code": code,
        "client_id": settings.calendar_client_id,
        "client_secret": settings.calendar_client_secret,
        "redirect_uri": settings.calendar_redirect_uri,
        "grant_type": "authorization_code",
    }
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.post(TOKEN_URL, data=payload)
    response.raise_for_status()
    token_data = response.json()
    refresh_token = token_data.get("refresh_token")
    if not refresh_token:
        existing = await repositories.get_google_tokens(uid)
        if existing and existing.get("refresh_token_enc"):
            refresh_token = decrypt_token(existing["refresh_token_enc"])
        else:
            raise GoogleCalendarError("Google OAuth did not return refresh_token")
    await repositories.store_google_tokens(
        uid,
        encrypt_token(refresh_token),
        access_token=token_data.get("access_token"),
        expires_at=_expires_at(token_data),
        scope=token_data.get("scope"),
    )
    logger.info("Stored Google Calendar tokens for %s", uid)


async def _refresh_access_token(uid: str) -> str | None:
    token_row = await repositories.get_google_tokens(uid)
    if not token_row or not token_row.get("refresh_token_enc"):
        return None
    settings = get_settings()
    payload = {
        "client_id": settings.calendar_client_id,
        "client_secret": settings.calendar_client_secret,
        "refresh_token": decrypt_token(token_row["refresh_token_enc"]),
        "grant_type": "refresh_token",
    }
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.post(TOKEN_URL, data=payload)
    response.raise_for_status()
    token_data = response.json()
    access_token = token_data.get("access_token")
    if not access_token:
        return None
    await repositories.update_google_access_token(uid, access_token, _expires_at(token_data), token_data.get("scope"))
    return access_token


async def get_access_token(uid: str) -> str | None:
    token_row = await repositories.get_google_tokens(uid)
    if not token_row:
        return None
    access_token = token_row.get("access_token")
    expires_at = token_row.get("expires_at")
    if access_token and expires_at:
        try:
            expires_dt = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
        except ValueError:
            expires_dt = None
        if expires_dt and expires_dt > datetime.now(timezone.utc):
            return access_token
    return await _refresh_access_token(uid)


async def _google_headers(uid: str) -> dict:
    access_token = await get_access_token(uid)
    if not access_token:
        raise GoogleCalendarError("Google Calendar token unavailable")
    return {"Authorization": f"Bearer {access_token}"}


def _events_endpoint(calendar_id: str, event_id: str | None = None) -> str:
    endpoint = f"{CALENDAR_API}/calendars/{quote(calendar_id, safe='')}/events"
    if event_id:
        endpoint = f"{endpoint}/{quote(event_id, safe='')}"
    return endpoint


async def list_events(uid: str, calendar_id: str, time_min: str, time_max: str, sync_token: str | None = None) -> dict:
    headers = await _google_headers(uid)
    params = {
        "singleEvents": "true",
        "maxResults": 250,
    }
    if sync_token:
        params["syncToken"] = sync_token
    else:
        params["orderBy"] = "startTime"
        params["timeMin"] = time_min
        params["timeMax"] = time_max
    async with httpx.AsyncClient(timeout=25) as client:
        response = await client.get(_events_endpoint(calendar_id), headers=headers, params=params)
    _raise_for_google_error(response, "Calendar API error")
    return response.json()


async def create_event(uid: str, calendar_id: str, payload: dict) -> dict:
    headers = await _google_headers(uid)
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.post(_events_endpoint(calendar_id), headers=headers, json=payload)
    _raise_for_google_error(response, "Google create_event failed")
    return response.json()


async def update_event(uid: str, calendar_id: str, event_id: str, patch: dict) -> dict:
    headers = await _google_headers(uid)
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.patch(_events_endpoint(calendar_id, event_id), headers=headers, json=patch)
    _raise_for_google_error(response, "Google update_event failed")
    return response.json()


async def delete_event(uid: str, calendar_id: str, event_id: str) -> None:
    headers = await _google_headers(uid)
    async with httpx.AsyncClient(timeout=20) as client:
        response = await client.delete(_events_endpoint(calendar_id, event_id), headers=headers)
    # Already gone on Google's side.
    if response.status_code in {404, 410}:
        return
    _raise_for_google_error(response, "Google delete_event failed")


async def get_calendar_timezone(uid: str, calendar_id: str) -> str:
    headers = await _google_headers(uid)
    endpoint = f"{CALENDAR_API}/calendars/{quote(calendar_id, safe='')}"
    async with httpx.AsyncClient(timeout=15) as client:
        response = await client.get(endpoint, headers=headers)
    _raise_for_google_error(response, "Google calendar fetch failed")
    return str(response.json().get("timeZone") or get_settings().app_timezone)


async def resolve_calendar_timezone(uid: str, calendar_id: str) -> str:
    try:
        return await get_calendar_timezone(uid, calendar_id)
    except (GoogleCalendarError, httpx.HTTPError) as exc:
        logger.warning("Falling back to app timezone for %s/%s: %s", uid, calendar_id, exc)
        return get_settings().app_timezone


async def sync_calendars(uid: str, now: datetime | None = None) -> dict:
    """Pull the coming week of Google events into calendar_events."""
    settings = get_settings()
    calendar_ids = ["primary"] + [item for item in settings.allowed_calendar_ids if item != "primary"]
    now = now or datetime.now(timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    time_min = day_start.isoformat().replace("+00:00", "Z")
    time_max = (day_start + timedelta(days=7)).isoformat().replace("+00:00", "Z")

    upserted = 0
    removed = 0
    for calendar_id in calendar_ids:
        cursor = await repositories.get_sync_cursor(uid, calendar_id)
        sync_token = cursor.get("sync_token") if cursor else None
        try:
            response = await list_events(uid, calendar_id, time_min, time_max, sync_token)
        except GoogleCalendarError as exc:
            await repositories.update_sync_cursor(uid, calendar_id, sync_token, str(exc)[:500])
            logger.warning("Calendar sync failed for %s/%s: %s", uid, calendar_id, exc)
            continue
        for event in response.get("items") or []:
            if event.get("status") == "cancelled":
                if event.get("id"):
                    await repositories.delete_event_by_google_ids(uid, calendar_id, event["id"])
                    removed += 1
                continue
            if await repositories.upsert_google_event(uid, calendar_id, event):
                upserted += 1
        await repositories.update_sync_cursor(uid, calendar_id, response.get("nextSyncToken"), None)
    return {"upserted": upserted, "removed": removed}
