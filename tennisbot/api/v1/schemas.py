"""Request and response models for the v1 API."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class SlotOut(BaseModel):
    date: date
    time: str


class DayOut(BaseModel):
    date: date


class BookingRequest(BaseModel):
    user_id: str
    display_name: Optional[str] = None
    date: date
    time: str
    phone_number: Optional[str] = None
    notes: Optional[str] = None


class BookingCreated(BaseModel):
    id: int


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    username: Optional[str] = None
    phone_number: Optional[str] = None
    session_date: date
    session_time: str
    calendar_event_id: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    action: str
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    performed_by: str
    timestamp: Optional[datetime] = None


class NotesUpdate(BaseModel):
    actor_id: str
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    actor_id: str


class PreferencesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    timezone: Optional[str] = None
    notifications: Optional[bool] = None
    language: Optional[str] = None
    preferred_times: Optional[List[int]] = None
