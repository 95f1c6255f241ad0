"""Booking persistence.

Every mutating method writes its booking_history entry inside the same
session as the change itself, so the change and its audit record commit or
roll back together.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import and_, case, distinct, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tennisbot.core.exceptions import (
    BookingNotFoundError,
    DuplicateSlotError,
    InvalidStatusTransition,
)
from tennisbot.db.models import (
    AUTH_TOKEN_ROW_ID,
    TERMINAL_STATUSES,
    AuthToken,
    Booking,
    BookingHistory,
    UserPreference,
    utcnow,
)
from tennisbot.db.session import Database
from tennisbot.services.slots import format_slot_time, parse_slot_date

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
SLOT_HOLDING_STATUSES = ("active", "completed")


class BookingUpdate(BaseModel):
    """Fields that may change on an existing booking; unset fields are left alone."""

    username: Optional[str] = None
    phone_number: Optional[str] = None
    calendar_event_id: Optional[str] = None
    status: Optional[Literal["active", "cancelled", "completed"]] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def status_not_null(self):
        if "status" in self.model_fields_set and self.status is None:
            raise ValueError("status cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class PreferenceUpdate(BaseModel):
    timezone: Optional[str] = None
    notifications: Optional[bool] = None
    language: Optional[str] = None
    preferred_times: Optional[List[int]] = None


class BookingStatistics(BaseModel):
    window_days: int
    total_bookings: int = 0
    active_bookings: int = 0
    cancelled_bookings: int = 0
    completed_bookings: int = 0
    unique_users: int = 0
    completion_rate: float = Field(default=0.0, ge=0.0, le=1.0)


def _is_slot_conflict(error: IntegrityError) -> bool:
    message = str(error.orig)
    return "UNIQUE constraint failed" in message and "session_date" in message


def _history_action(old_status: str, new_status: str) -> str:
    if old_status != new_status and new_status in TERMINAL_STATUSES:
        return new_status
    return "modified"


class BookingStore:
    """Repository for bookings, their history, auth tokens and preferences."""

    def __init__(self, database: Database, tz):
        self.database = database
        self.tz = tz

    def local_now(self) -> datetime:
        """Current wall-clock time in the club's timezone, naive like stored slot times."""
        return datetime.now(self.tz).replace(tzinfo=None)

    # Bookings

    def create_booking(
        self,
        user_id: str,
        session_date,
        session_time,
        username: Optional[str] = None,
        phone_number: Optional[str] = None,
        calendar_event_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Insert an active booking and its ``created`` history entry.

        Raises:
            DuplicateSlotError: another active or completed booking holds the slot.
        """
        session_date = parse_slot_date(session_date)
        session_time = format_slot_time(session_time)
        booking = Booking(
            user_id=str(user_id),
            username=username,
            phone_number=phone_number,
            session_date=session_date,
            session_time=session_time,
            calendar_event_id=calendar_event_id,
            status="active",
            notes=notes,
        )
        try:
            with self.database.session_scope() as db:
                db.add(booking)
                db.flush()
                self._log_history(db, booking.id, "created", None, booking.snapshot(), str(user_id))
        except IntegrityError as e:
            if _is_slot_conflict(e):
                raise DuplicateSlotError(session_date, session_time) from e
            raise
        logger.info(f"Created booking #{booking.id} for {session_date} {session_time}")
        return booking

    def get_booking_by_id(self, booking_id: int) -> Optional[Booking]:
        with self.database.session_scope() as db:
            return db.get(Booking, booking_id)

    def get_bookings_by_user(self, user_id: str) -> List[Booking]:
        """Active bookings of one user, earliest first."""
        with self.database.session_scope() as db:
            return db.execute(
                select(Booking)
                .where(Booking.user_id == str(user_id), Booking.status == "active")
                .order_by(Booking.session_date, Booking.session_time)
            ).scalars().all()

    def get_active_bookings(self, now: Optional[datetime] = None) -> List[Booking]:
        """Active bookings that have not started yet."""
        now = now or self.local_now()
        today, current_time = now.date(), now.strftime("%H:%M")
        with self.database.session_scope() as db:
            return db.execute(
                select(Booking)
                .where(
                    Booking.status == "active",
                    or_(
                        Booking.session_date > today,
                        and_(Booking.session_date == today, Booking.session_time >= current_time),
                    ),
                )
                .order_by(Booking.session_date, Booking.session_time)
            ).scalars().all()

    def get_bookings_by_date_range(self, start_date, end_date) -> List[Booking]:
        """All bookings, any status, between two dates inclusive."""
        start_date, end_date = parse_slot_date(start_date), parse_slot_date(end_date)
        with self.database.session_scope() as db:
            return db.execute(
                select(Booking)
                .where(Booking.session_date.between(start_date, end_date))
                .order_by(Booking.session_date, Booking.session_time)
            ).scalars().all()

    def is_slot_taken(self, session_date, session_time) -> bool:
        session_date = parse_slot_date(session_date)
        session_time = format_slot_time(session_time)
        with self.database.session_scope() as db:
            return db.execute(
                select(exists().where(
                    Booking.session_date == session_date,
                    Booking.session_time == session_time,
                    Booking.status.in_(SLOT_HOLDING_STATUSES),
                ))
            ).scalar()

    def update_booking(self, booking_id: int, update: BookingUpdate, performed_by: str) -> Booking:
        """Apply a partial update, bump ``updated_at`` and record one history entry."""
        return self._apply_update(booking_id, update.changes(), performed_by)

    def cancel_booking(self, booking_id: int, performed_by: str) -> Booking:
        """
        Cancel an active booking.

        Raises:
            BookingNotFoundError: the booking does not exist or is not active.
        """
        booking = self._apply_update(
            booking_id, {"status": "cancelled"}, performed_by, require_active=True
        )
        logger.info(f"Cancelled booking #{booking_id} by {performed_by}")
        return booking

    def _apply_update(
        self,
        booking_id: int,
        changes: Dict[str, Any],
        performed_by: str,
        require_active: bool = False,
    ) -> Booking:
        with self.database.session_scope() as db:
            booking = db.get(Booking, booking_id)
            if booking is None:
                raise BookingNotFoundError(f"Booking #{booking_id} not found")
            if require_active and booking.status != "active":
                raise BookingNotFoundError(f"Booking #{booking_id} is not active")
            if not changes:
                return booking

            new_status = changes.get("status", booking.status)
            if new_status != booking.status and booking.status in TERMINAL_STATUSES:
                raise InvalidStatusTransition(
                    f"Booking #{booking_id} is {booking.status} and cannot become {new_status}"
                )

            old_values = booking.snapshot()
            for field, value in changes.items():
                setattr(booking, field, value)
            booking.updated_at = utcnow()
            db.flush()

            self._log_history(
                db,
                booking.id,
                _history_action(old_values["status"], booking.status),
                old_values,
                booking.snapshot(),
                performed_by,
            )
            return booking

    def mark_past_bookings_completed(self, now: datetime) -> List[int]:
        """
        Complete every active booking whose start is strictly before ``now``.

        ``now`` is wall-clock time in the club's timezone. The whole batch,
        history entries included, commits as one transaction.
        """
        today, current_time = now.date(), now.strftime("%H:%M")
        with self.database.session_scope() as db:
            bookings = db.execute(
                select(Booking).where(
                    Booking.status == "active",
                    or_(
                        Booking.session_date < today,
                        and_(Booking.session_date == today, Booking.session_time < current_time),
                    ),
                )
            ).scalars().all()
            for booking in bookings:
                old_values = booking.snapshot()
                booking.status = "completed"
                booking.updated_at = utcnow()
                self._log_history(db, booking.id, "completed", old_values, booking.snapshot(), SYSTEM_ACTOR)
            return [booking.id for booking in bookings]

    def get_booking_statistics(self, window_days: int = 30, now: Optional[datetime] = None) -> BookingStatistics:
        """Aggregate counts over bookings created in the trailing window."""
        cutoff = (now or utcnow()) - timedelta(days=window_days)
        with self.database.session_scope() as db:
            row = db.execute(
                select(
                    func.count(Booking.id),
                    func.count(case((Booking.status == "active", 1))),
                    func.count(case((Booking.status == "cancelled", 1))),
                    func.count(case((Booking.status == "completed", 1))),
                    func.count(distinct(Booking.user_id)),
                ).where(Booking.created_at >= cutoff)
            ).one()
        total, active, cancelled, completed, users = row
        return BookingStatistics(
            window_days=window_days,
            total_bookings=total,
            active_bookings=active,
            cancelled_bookings=cancelled,
            completed_bookings=completed,
            unique_users=users,
            completion_rate=completed / total if total else 0.0,
        )

    def get_booking_history(self, booking_id: int) -> List[BookingHistory]:
        with self.database.session_scope() as db:
            return db.execute(
                select(BookingHistory)
                .where(BookingHistory.booking_id == booking_id)
                .order_by(BookingHistory.timestamp, BookingHistory.id)
            ).scalars().all()

    def _log_history(
        self,
        db: Session,
        booking_id: int,
        action: str,
        old_values: Optional[dict],
        new_values: Optional[dict],
        performed_by: str,
    ) -> None:
        db.add(BookingHistory(
            booking_id=booking_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            performed_by=str(performed_by),
        ))

    # Auth tokens

    def get_auth_tokens(self) -> Optional[AuthToken]:
        with self.database.session_scope() as db:
            return db.get(AuthToken, AUTH_TOKEN_ROW_ID)

    def save_auth_tokens(
        self,
        access_token: str,
        refresh_token: str,
        expiry: Optional[datetime],
        scope: Optional[str] = None,
    ) -> AuthToken:
        """Replace the singleton credential row."""
        with self.database.session_scope() as db:
            token = db.get(AuthToken, AUTH_TOKEN_ROW_ID)
            if token is None:
                token = AuthToken(id=AUTH_TOKEN_ROW_ID)
                db.add(token)
            token.access_token = access_token
            token.refresh_token = refresh_token
            token.expiry = expiry
            token.scope = scope
            token.updated_at = utcnow()
        logger.info("Stored calendar credentials")
        return token

    # Preferences

    def get_user_preferences(self, user_id: str) -> Optional[UserPreference]:
        with self.database.session_scope() as db:
            return db.execute(
                select(UserPreference).where(UserPreference.user_id == str(user_id))
            ).scalar_one_or_none()

    def save_user_preferences(self, user_id: str, update: PreferenceUpdate) -> UserPreference:
        with self.database.session_scope() as db:
            prefs = db.execute(
                select(UserPreference).where(UserPreference.user_id == str(user_id))
            ).scalar_one_or_none()
            if prefs is None:
                prefs = UserPreference(user_id=str(user_id))
                db.add(prefs)
            for field, value in update.model_dump(exclude_unset=True).items():
                if value is not None:
                    setattr(prefs, field, value)
            prefs.updated_at = utcnow()
            db.flush()
            return prefs
