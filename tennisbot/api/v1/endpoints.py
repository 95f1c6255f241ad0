"""API v1 endpoints consumed by the Telegram UI layer."""
import logging
from datetime import date
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request

from tennisbot.api.v1.schemas import (
    BookingCreated,
    BookingOut,
    BookingRequest,
    CancelRequest,
    DayOut,
    HistoryOut,
    NotesUpdate,
    PreferencesOut,
    SlotOut,
)
from tennisbot.core.exceptions import (
    AuthenticationError,
    BookingNotFoundError,
    BookingServiceError,
    DuplicateSlotError,
    ExternalServiceError,
    InvalidSlotError,
    InvalidStatusTransition,
)
from tennisbot.db.repository import BookingStatistics, PreferenceUpdate

logger = logging.getLogger(__name__)
router = APIRouter()

ERROR_STATUS = [
    (DuplicateSlotError, 409),
    (InvalidStatusTransition, 409),
    (BookingNotFoundError, 404),
    (AuthenticationError, 401),
    (ExternalServiceError, 502),
    (InvalidSlotError, 422),
]


def to_http_error(error: BookingServiceError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Unhandled booking service error: {error}", exc_info=True)
    return HTTPException(status_code=500, detail="Internal booking service error.")


def _orchestrator(request: Request):
    return request.app.state.orchestrator


def _store(request: Request):
    return request.app.state.store


@router.get("/slots", response_model=List[SlotOut])
async def list_available_slots(request: Request, days: int = Query(None, ge=1, le=60)):
    try:
        slots = await _orchestrator(request).available_slots(days)
    except BookingServiceError as e:
        raise to_http_error(e)
    return [SlotOut(date=s.date, time=s.time) for s in slots]


@router.get("/slots/days", response_model=List[DayOut])
async def list_available_days(request: Request, days: int = Query(None, ge=1, le=60)):
    try:
        days_available = await _orchestrator(request).available_days(days)
    except BookingServiceError as e:
        raise to_http_error(e)
    return [DayOut(date=d.date) for d in days_available]


@router.get("/slots/{day}", response_model=List[SlotOut])
async def list_available_times(request: Request, day: date):
    try:
        slots = await _orchestrator(request).available_times(day)
    except BookingServiceError as e:
        raise to_http_error(e)
    return [SlotOut(date=s.date, time=s.time) for s in slots]


@router.post("/bookings", response_model=BookingCreated, status_code=201)
async def create_booking(request: Request, payload: BookingRequest):
    try:
        booking_id = await _orchestrator(request).book(
            payload.user_id,
            payload.display_name,
            payload.date,
            payload.time,
            phone_number=payload.phone_number,
            notes=payload.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except BookingServiceError as e:
        raise to_http_error(e)
    return BookingCreated(id=booking_id)


@router.get("/bookings/{booking_id}", response_model=BookingOut)
async def get_booking(request: Request, booking_id: int):
    booking = _store(request).get_booking_by_id(booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found.")
    return booking


@router.get("/bookings/{booking_id}/history", response_model=List[HistoryOut])
async def get_booking_history(request: Request, booking_id: int):
    store = _store(request)
    if store.get_booking_by_id(booking_id) is None:
        raise HTTPException(status_code=404, detail="Booking not found.")
    return store.get_booking_history(booking_id)


@router.patch("/bookings/{booking_id}", response_model=BookingOut)
async def update_booking_notes(request: Request, booking_id: int, payload: NotesUpdate):
    try:
        return await _orchestrator(request).update_notes(booking_id, payload.actor_id, payload.notes)
    except BookingServiceError as e:
        raise to_http_error(e)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(request: Request, booking_id: int, payload: CancelRequest):
    try:
        return await _orchestrator(request).cancel(booking_id, payload.actor_id)
    except BookingServiceError as e:
        raise to_http_error(e)


@router.get("/users/{user_id}/bookings", response_model=List[BookingOut])
async def list_user_bookings(request: Request, user_id: str):
    return _orchestrator(request).bookings_for_user(user_id)


@router.get("/users/{user_id}/preferences", response_model=PreferencesOut)
async def get_preferences(request: Request, user_id: str):
    prefs = _store(request).get_user_preferences(user_id)
    if prefs is None:
        raise HTTPException(status_code=404, detail="No preferences stored for this user.")
    return prefs


@router.put("/users/{user_id}/preferences", response_model=PreferencesOut)
async def save_preferences(request: Request, user_id: str, payload: PreferenceUpdate):
    return _store(request).save_user_preferences(user_id, payload)


@router.get("/statistics", response_model=BookingStatistics)
async def get_statistics(request: Request, days: int = Query(30, ge=1, le=365)):
    return _orchestrator(request).statistics(days)
