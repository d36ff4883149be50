from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt


class CallablePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Callable payloads (camelCase on the wire)


class ToggleReminderData(CallablePayload):
    reminder_id: str = Field(..., min_length=1, alias="reminderId")
    completed: StrictBool


class CreateReminderData(CallablePayload):
    title: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1)
    description: str = ""
    category: str = "personal"


class UpdateReminderData(CallablePayload):
    id: str = Field(..., min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    date: Optional[str] = None


class DeleteReminderData(CallablePayload):
    id: str = Field(..., min_length=1)


class AwardStarsData(CallablePayload):
    to_user_id: str = Field(..., min_length=1, alias="toUserId")
    amount: StrictInt
    reason: Optional[str] = None
    category: Optional[str] = None


class ToggleDailyStatusData(CallablePayload):
    habit_id: str = Field(..., min_length=1, alias="habitId")
    date: str = Field(..., min_length=1)
    done: StrictBool


class LinkPartnerData(CallablePayload):
    email: str = Field(..., min_length=3)


class RedeemCouponData(CallablePayload):
    coupon_id: str = Field(..., min_length=1, alias="couponId")


class SetAdminData(CallablePayload):
    uid: str = Field(..., min_length=1)
    is_admin: StrictBool = Field(..., alias="isAdmin")


class CleanupCollectionData(CallablePayload):
    collection_name: str = Field(..., min_length=1, alias="collectionName")


# REST payloads


class CallableRequest(BaseModel):
    data: Any = None


class UserProfile(BaseModel):
    email: str
    display_name: Optional[str] = None


class UserSettingsPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notifications: Optional[bool] = None
    email_notifications: Optional[bool] = Field(None, alias="emailNotifications")
    calendar_sync: Optional[bool] = Field(None, alias="calendarSync")


class HabitCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    weekly_goal: int = Field(7, ge=1, le=7)


class HabitPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    weekly_goal: Optional[int] = Field(None, ge=1, le=7)


class HabitToggle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    day: date = Field(..., alias="date")
    current_status: bool = False


class StatusNote(BaseModel):
    notes: str = ""


class MoodPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mood: str
    day: Optional[date] = Field(None, alias="date")
    note: Optional[str] = None


class MessageCreate(BaseModel):
    text: str = Field(..., min_length=1)
    type: str = "text"


class CouponCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    star_cost: int = Field(5, ge=0)
    color: Optional[str] = None


class PartnerLink(BaseModel):
    email: str


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    start_at: str
    end_at: Optional[str] = None
    all_day: bool = False
    google_calendar_id: Optional[str] = None
    sync_to_google: bool = False


class EventPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    start_at: Optional[str] = None
    end_at: Optional[str] = None
    all_day: Optional[bool] = None
