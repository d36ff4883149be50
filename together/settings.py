from __future__ import annotations

from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    backend_session_secret: str = Field(..., alias="BACKEND_SESSION_SECRET")
    google_token_encryption_key: str = Field(..., alias="GOOGLE_TOKEN_ENCRYPTION_KEY")

    app_timezone: str = Field("UTC", alias="APP_TIMEZONE")

    calendar_client_id: str | None = Field(None, alias="CALENDAR_CLIENT_ID")
    calendar_client_secret: str | None = Field(None, alias="CALENDAR_CLIENT_SECRET")
    calendar_redirect_uri: str | None = Field(None, alias="CALENDAR_REDIRECT_URI")
    allowed_calendars_raw: str = Field("", alias="ALLOWED_CALENDAR_IDS")

    max_star_award: int = Field(100, alias="MAX_STAR_AWARD")
    award_dedup_window: Literal["week", "day"] = Field("week", alias="AWARD_DEDUP_WINDOW")
    transaction_max_attempts: int = Field(5, alias="TRANSACTION_MAX_ATTEMPTS")
    bulk_batch_size: int = Field(500, alias="BULK_BATCH_SIZE")
    stream_poll_seconds: float = Field(2.0, alias="STREAM_POLL_SECONDS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def allowed_calendar_ids(self) -> List[str]:
        items = [item.strip() for item in str(self.allowed_calendars_raw).split(",") if item.strip()]
        dedup = []
        seen = set()
        for item in items:
            if item in seen:
                continue
            seen.add(item)
            dedup.append(item)
        return dedup


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
