import asyncio
from datetime import date, datetime

import pytest

from tennisbot.core.exceptions import (
    AuthenticationError,
    BookingNotFoundError,
    DuplicateSlotError,
    ExternalServiceError,
    InvalidSlotError,
)
from tennisbot.services.booking import BookingOrchestrator
from tennisbot.services.slots import BusyInterval
from tennisbot.tests.fakes import REFERENCE_NOW, FakeNotifier

MONDAY = date(2024, 6, 10)


@pytest.fixture
def orchestrator(settings, store, calendar, notifier):
    return BookingOrchestrator(settings, store, calendar, notifier, clock=lambda: REFERENCE_NOW)


def test_book_creates_event_booking_and_notification(orchestrator, store, calendar, notifier):
    booking_id = asyncio.run(orchestrator.book("42", "alice", "2024-06-10", "14:00"))

    booking = store.get_booking_by_id(booking_id)
    assert booking.status == "active"
    assert booking.username == "alice"
    assert booking.calendar_event_id in calendar.events
    event = calendar.events[booking.calendar_event_id]
    assert event["start"] == datetime(2024, 6, 10, 14, 0)
    assert event["end"] == datetime(2024, 6, 10, 15, 0)
    assert "@alice" in event["summary"]
    assert notifier.created == [booking_id]


def test_book_rejects_slot_outside_template(orchestrator, calendar):
    with pytest.raises(InvalidSlotError):
        asyncio.run(orchestrator.book("42", "alice", MONDAY, "12:00"))
    assert calendar.events == {}


def test_book_rejects_past_slot(orchestrator):
    with pytest.raises(InvalidSlotError):
        asyncio.run(orchestrator.book("42", "alice", date(2024, 6, 9), "14:00"))


def test_book_held_slot_fails_before_calendar_call(orchestrator, store, calendar):
    store.create_booking("7", MONDAY, "14:00")
    with pytest.raises(DuplicateSlotError):
        asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    assert calendar.events == {}


def test_concurrent_insert_triggers_compensating_delete(orchestrator, store, calendar):
    # Another request wins the slot between the local check and the insert.
    calendar.on_create = lambda start: store.create_booking("7", start.date(), start.strftime("%H:%M"))

    with pytest.raises(DuplicateSlotError):
        asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))

    assert calendar.deleted == ["evt-1"]
    assert calendar.events == {}
    holders = store.get_bookings_by_date_range(MONDAY, MONDAY)
    assert [b.user_id for b in holders] == ["7"]


def test_calendar_failure_surfaces_as_slot_unavailable(orchestrator, store, calendar, calendar_unavailable):
    calendar.fail_create = calendar_unavailable

    with pytest.raises(ExternalServiceError, match="may no longer be available"):
        asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    assert not store.is_slot_taken(MONDAY, "14:00")


def test_authentication_failure_propagates(orchestrator, store, calendar):
    calendar.fail_create = AuthenticationError("Authentication failed. Please re-authenticate.")
    with pytest.raises(AuthenticationError):
        asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    assert not store.is_slot_taken(MONDAY, "14:00")


def test_notification_failure_does_not_fail_booking(settings, store, calendar):
    orchestrator = BookingOrchestrator(settings, store, calendar, FakeNotifier(fail=True), clock=lambda: REFERENCE_NOW)
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    assert store.get_booking_by_id(booking_id).status == "active"


def test_cancel_deletes_event_and_notifies(orchestrator, store, calendar, notifier):
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))

    cancelled = asyncio.run(orchestrator.cancel(booking_id, "42"))

    assert cancelled.status == "cancelled"
    assert calendar.deleted == ["evt-1"]
    assert notifier.cancelled == [booking_id]
    assert [h.action for h in store.get_booking_history(booking_id)] == ["created", "cancelled"]


def test_cancel_by_other_user_is_not_found(orchestrator, store):
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    with pytest.raises(BookingNotFoundError):
        asyncio.run(orchestrator.cancel(booking_id, "99"))
    assert store.get_booking_by_id(booking_id).status == "active"


def test_cancel_twice_is_not_found(orchestrator):
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    asyncio.run(orchestrator.cancel(booking_id, "42"))
    with pytest.raises(BookingNotFoundError):
        asyncio.run(orchestrator.cancel(booking_id, "42"))


def test_cancel_survives_calendar_delete_failure(orchestrator, calendar, calendar_unavailable):
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))
    calendar.fail_delete = calendar_unavailable
    assert asyncio.run(orchestrator.cancel(booking_id, "42")).status == "cancelled"


def test_update_notes_requires_owner(orchestrator, store):
    booking_id = asyncio.run(orchestrator.book("42", "alice", MONDAY, "14:00"))

    updated = asyncio.run(orchestrator.update_notes(booking_id, "42", "court 3"))
    assert updated.notes == "court 3"
    with pytest.raises(BookingNotFoundError):
        asyncio.run(orchestrator.update_notes(booking_id, "99", "hijack"))


def test_available_slots_combine_calendar_and_store(orchestrator, store, calendar):
    calendar.busy = [BusyInterval(datetime(2024, 6, 10, 9), datetime(2024, 6, 10, 10))]
    store.create_booking("7", MONDAY, "10:00")

    slots = asyncio.run(orchestrator.available_slots(1))

    assert [s.time for s in slots] == ["08:00", "11:00", "14:00", "15:00", "16:00", "17:00", "18:00", "19:00"]


def test_available_days_skip_sunday(orchestrator):
    days = asyncio.run(orchestrator.available_days(7))
    assert date(2024, 6, 16) not in [d.date for d in days]
    assert len(days) == 6


def test_available_times_for_single_day(orchestrator, calendar):
    calendar.busy = [BusyInterval(datetime(2024, 6, 11, 14), datetime(2024, 6, 11, 16))]
    times = [s.time for s in asyncio.run(orchestrator.available_times("2024-06-11"))]
    assert "14:00" not in times and "15:00" not in times
    assert "16:00" in times


def test_available_times_for_past_day_is_empty(orchestrator, calendar):
    assert asyncio.run(orchestrator.available_times(date(2024, 6, 1))) == []
    assert calendar.queries == []


def test_available_times_after_last_slot_of_today_is_empty(settings, store, calendar, notifier):
    late = BookingOrchestrator(settings, store, calendar, notifier, clock=lambda: datetime(2024, 6, 10, 19, 30))
    assert asyncio.run(late.available_times(MONDAY)) == []
    assert calendar.queries == []


def test_available_times_today_queries_from_now(orchestrator, calendar):
    asyncio.run(orchestrator.available_times(MONDAY))
    assert calendar.queries == [(REFERENCE_NOW, datetime(2024, 6, 11))]
