"""Booking workflow: slot queries, booking and cancellation."""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from tennisbot.core.exceptions import (
    BookingNotFoundError,
    DuplicateSlotError,
    ExternalServiceError,
    InvalidSlotError,
)
from tennisbot.db.models import Booking
from tennisbot.db.repository import BookingStatistics, BookingStore, BookingUpdate, SLOT_HOLDING_STATUSES
from tennisbot.services.slots import (
    DaySlot,
    TimeSlot,
    available_only,
    busy_slot_keys,
    format_slot_time,
    is_working_slot,
    iter_day_slots,
    iter_time_slots,
    parse_slot_date,
    parse_slot_time,
    time_slots_for_day,
)

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_MESSAGE = "The calendar could not be updated; the slot may no longer be available."


class BookingOrchestrator:
    """
    Coordinates the calendar, the store and operator notifications.

    Store calls run synchronously inside their own transaction. Calendar
    calls are blocking HTTP requests and are moved off the event loop.
    """

    def __init__(self, settings, store: BookingStore, calendar, notifier, clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings
        self.store = store
        self.calendar = calendar
        self.notifier = notifier
        self._clock = clock

    def now(self) -> datetime:
        """Current wall-clock time in the club's timezone, naive."""
        if self._clock:
            return self._clock()
        return datetime.now(self.settings.tz).replace(tzinfo=None)

    @property
    def session_duration(self) -> timedelta:
        return timedelta(minutes=self.settings.session_duration_minutes)

    # Slot queries

    async def _busy_keys(self, start: datetime, end: datetime) -> set:
        intervals = await asyncio.to_thread(self.calendar.list_busy_intervals, start, end)
        busy = busy_slot_keys(intervals, self.settings.working_hours, self.session_duration, self.settings.tz)
        for booking in self.store.get_bookings_by_date_range(start.date(), end.date()):
            if booking.status in SLOT_HOLDING_STATUSES:
                busy.add((booking.session_date, booking.session_time))
        return busy

    async def available_slots(self, days_ahead: Optional[int] = None) -> List[TimeSlot]:
        days_ahead = days_ahead or self.settings.days_ahead
        reference = self.now()
        busy = await self._busy_keys(reference, reference + timedelta(days=days_ahead))
        return available_only(iter_time_slots(
            reference, days_ahead, self.settings.working_hours, busy, self.settings.excluded_weekday
        ))

    async def available_days(self, days_ahead: Optional[int] = None) -> List[DaySlot]:
        days_ahead = days_ahead or self.settings.days_ahead
        reference = self.now()
        busy = await self._busy_keys(reference, reference + timedelta(days=days_ahead))
        return available_only(iter_day_slots(
            reference, days_ahead, self.settings.working_hours, busy, self.settings.excluded_weekday
        ))

    async def available_times(self, day) -> List[TimeSlot]:
        """Free slots of a single date. The excluded weekday is not applied here."""
        day = parse_slot_date(day)
        reference = self.now()
        if not any(time_slots_for_day(day, reference, self.settings.working_hours)):
            return []
        day_start = datetime.combine(day, datetime.min.time())
        busy = await self._busy_keys(max(reference, day_start), day_start + timedelta(days=1))
        return available_only(time_slots_for_day(day, reference, self.settings.working_hours, busy))

    # Booking lifecycle

    def _validate_slot(self, session_date: date, session_time: str) -> datetime:
        if not is_working_slot(session_time, self.settings.working_hours):
            raise InvalidSlotError(f"{session_time} is not a bookable hour")
        start = datetime.combine(session_date, parse_slot_time(session_time))
        if start < self.now():
            raise InvalidSlotError(f"{session_date} {session_time} is in the past")
        return start

    async def book(
        self,
        user_id: str,
        display_name: Optional[str],
        session_date,
        session_time,
        phone_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """
        Book a slot for a user and return the booking id.

        Raises:
            InvalidSlotError: outside the working hours or in the past.
            DuplicateSlotError: the slot is already held.
            AuthenticationError: calendar credentials are unusable.
            ExternalServiceError: the calendar event could not be created.
        """
        session_date = parse_slot_date(session_date)
        session_time = format_slot_time(session_time)
        start = self._validate_slot(session_date, session_time)

        if self.store.is_slot_taken(session_date, session_time):
            raise DuplicateSlotError(session_date, session_time)

        who = f"@{display_name}" if display_name else f"user {user_id}"
        try:
            event_id = await asyncio.to_thread(
                self.calendar.create_event,
                f"Tennis session with {who}",
                f"Booked via Telegram by {who} (id {user_id})",
                start,
                start + self.session_duration,
                self.settings.timezone,
            )
        except ExternalServiceError as e:
            raise ExternalServiceError(SLOT_UNAVAILABLE_MESSAGE) from e

        try:
            booking = self.store.create_booking(
                user_id=user_id,
                session_date=session_date,
                session_time=session_time,
                username=display_name,
                phone_number=phone_number,
                calendar_event_id=event_id,
                notes=notes,
            )
        except DuplicateSlotError:
            logger.warning(f"Slot {session_date} {session_time} taken concurrently, removing event {event_id}")
            await self._delete_event_quietly(event_id)
            raise

        await self._notify(self.notifier.notify_booking_created, booking)
        return booking.id

    async def cancel(self, booking_id: int, actor_id: str) -> Booking:
        """
        Cancel an active booking owned by ``actor_id``.

        Raises:
            BookingNotFoundError: unknown id, another user's booking, or not active.
        """
        booking = self._owned_booking(booking_id, actor_id)
        if booking.status != "active":
            raise BookingNotFoundError(f"Booking #{booking_id} is not active")

        if booking.calendar_event_id:
            await self._delete_event_quietly(booking.calendar_event_id)

        cancelled = self.store.cancel_booking(booking_id, actor_id)
        await self._notify(self.notifier.notify_booking_cancelled, cancelled)
        return cancelled

    async def update_notes(self, booking_id: int, actor_id: str, notes: Optional[str]) -> Booking:
        self._owned_booking(booking_id, actor_id)
        return self.store.update_booking(booking_id, BookingUpdate(notes=notes), actor_id)

    def _owned_booking(self, booking_id: int, actor_id: str) -> Booking:
        booking = self.store.get_booking_by_id(booking_id)
        if booking is None or booking.user_id != str(actor_id):
            raise BookingNotFoundError(f"Booking #{booking_id} not found")
        return booking

    async def _delete_event_quietly(self, event_id: str) -> None:
        try:
            await asyncio.to_thread(self.calendar.delete_event, event_id)
        except Exception as e:
            logger.error(f"Could not delete calendar event {event_id}: {e}", exc_info=True)

    async def _notify(self, send, booking: Booking) -> None:
        try:
            await asyncio.to_thread(send, booking)
        except Exception as e:
            logger.error(f"Operator notification failed for booking #{booking.id}: {e}", exc_info=True)

    # Pass-throughs

    def bookings_for_user(self, user_id: str) -> List[Booking]:
        return self.store.get_bookings_by_user(user_id)

    def statistics(self, window_days: int = 30) -> BookingStatistics:
        return self.store.get_booking_statistics(window_days)
