"""Slot availability calculation.

Everything here is a pure function of its arguments: the caller supplies the
reference instant, the working-hours template and the busy intervals reported
by the calendar. Slot times are wall-clock values in the club's timezone,
represented as naive datetimes.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

SlotKey = Tuple[date, str]

TIME_FORMAT = "%H:%M"
DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class TimeSlot:
    date: date
    time: str
    available: bool

    @property
    def start(self) -> datetime:
        return datetime.combine(self.date, parse_slot_time(self.time))

    @property
    def key(self) -> SlotKey:
        return self.date, self.time


@dataclass(frozen=True)
class DaySlot:
    date: date
    available: bool


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime


def parse_slot_time(value: Union[str, time]) -> time:
    """Accept ``time`` objects and ``H:MM``/``HH:MM`` strings."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime(value.strip(), TIME_FORMAT).time()
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid slot time: {value!r}, expected HH:MM")


def format_slot_time(value: Union[str, time]) -> str:
    return parse_slot_time(value).strftime(TIME_FORMAT)


def parse_slot_date(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid slot date: {value!r}, expected YYYY-MM-DD")


def _to_local(value: datetime, tz) -> datetime:
    """Convert an aware datetime to naive wall-clock time in ``tz``."""
    if value.tzinfo is None or tz is None:
        return value.replace(tzinfo=None)
    return value.astimezone(tz).replace(tzinfo=None)


def busy_slot_keys(
    intervals: Iterable[BusyInterval],
    hours: Sequence[int],
    duration: timedelta = timedelta(hours=1),
    tz=None,
) -> Set[SlotKey]:
    """
    Map busy intervals onto the slot grid.

    A slot ``[start, start + duration)`` is busy when any interval overlaps
    it. Interval bounds are converted into ``tz`` first when they carry
    timezone information.
    """
    busy: Set[SlotKey] = set()
    for interval in intervals:
        start = _to_local(interval.start, tz)
        end = _to_local(interval.end, tz)
        if end <= start:
            continue
        day = (start - duration).date()
        while day <= end.date():
            for hour in hours:
                slot_start = datetime.combine(day, time(hour))
                if slot_start < end and start < slot_start + duration:
                    busy.add((day, slot_start.strftime(TIME_FORMAT)))
            day += timedelta(days=1)
    return busy


def time_slots_for_day(
    day: date,
    reference: datetime,
    hours: Sequence[int],
    busy: Optional[Set[SlotKey]] = None,
) -> Iterator[TimeSlot]:
    """Yield the template slots of one day that are not before ``reference``."""
    busy = busy or set()
    for hour in sorted(hours):
        slot_start = datetime.combine(day, time(hour))
        if slot_start < reference:
            continue
        key = (day, slot_start.strftime(TIME_FORMAT))
        yield TimeSlot(date=day, time=key[1], available=key not in busy)


def _window_days(reference: datetime, days_ahead: int, excluded_weekday: Optional[int]) -> Iterator[date]:
    for offset in range(days_ahead):
        day = reference.date() + timedelta(days=offset)
        if excluded_weekday is not None and day.weekday() == excluded_weekday:
            continue
        yield day


def iter_time_slots(
    reference: datetime,
    days_ahead: int,
    hours: Sequence[int],
    busy: Optional[Set[SlotKey]] = None,
    excluded_weekday: Optional[int] = 6,
) -> Iterator[TimeSlot]:
    """
    Lazily enumerate every slot in ``days_ahead`` days starting at the
    reference date, ordered by date then hour.

    Slots before ``reference`` are skipped, so an hour that has already
    started on the current day is not offered. Days falling on
    ``excluded_weekday`` (``date.weekday()`` numbering) are omitted.
    """
    for day in _window_days(reference, days_ahead, excluded_weekday):
        yield from time_slots_for_day(day, reference, hours, busy)


def iter_day_slots(
    reference: datetime,
    days_ahead: int,
    hours: Sequence[int],
    busy: Optional[Set[SlotKey]] = None,
    excluded_weekday: Optional[int] = 6,
) -> Iterator[DaySlot]:
    """A day is available when at least one of its remaining slots is free."""
    for day in _window_days(reference, days_ahead, excluded_weekday):
        available = any(slot.available for slot in time_slots_for_day(day, reference, hours, busy))
        yield DaySlot(date=day, available=available)


def available_only(slots: Iterable) -> List:
    return [slot for slot in slots if slot.available]


def is_working_slot(session_time: Union[str, time], hours: Sequence[int]) -> bool:
    """True when the time is on the hour and that hour is in the template."""
    parsed = parse_slot_time(session_time)
    return parsed.minute == 0 and parsed.hour in hours
