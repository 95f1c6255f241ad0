"""SQLAlchemy database models."""
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

BOOKING_STATUSES = ("active", "cancelled", "completed")
TERMINAL_STATUSES = ("cancelled", "completed")
HISTORY_ACTIONS = ("created", "modified", "cancelled", "completed")
AUTH_TOKEN_ROW_ID = 1


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Booking(Base):
    """A reserved tennis session."""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, index=True)
    username = Column(Text, nullable=True)
    phone_number = Column(Text, nullable=True)
    session_date = Column(Date, nullable=False)
    session_time = Column(String(5), nullable=False)
    calendar_event_id = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="active")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'cancelled', 'completed')",
            name="check_status"
        ),
        # Cancelled rows keep their history but release the slot.
        Index(
            "uq_bookings_active_slot",
            "session_date",
            "session_time",
            unique=True,
            sqlite_where=text("status IN ('active', 'completed')"),
        ),
        Index("ix_bookings_date_time", "session_date", "session_time"),
        Index("ix_bookings_status", "status"),
    )

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serializable view of the row, used for history entries."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.username,
            "phone_number": self.phone_number,
            "session_date": self.session_date.isoformat() if self.session_date else None,
            "session_time": self.session_time,
            "calendar_event_id": self.calendar_event_id,
            "status": self.status,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Booking #{self.id} {self.session_date} {self.session_time} - {self.status}>"


class BookingHistory(Base):
    """Append-only audit record of a booking state transition."""

    __tablename__ = "booking_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        Integer,
        ForeignKey("bookings.id"),
        nullable=False,
        index=True
    )
    action = Column(Text, nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    performed_by = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            "action IN ('created', 'modified', 'cancelled', 'completed')",
            name="check_action"
        ),
    )

    def __repr__(self):
        return f"<BookingHistory {self.action} for Booking {self.booking_id}>"


class AuthToken(Base):
    """Singleton credential set for the Google Calendar integration."""

    __tablename__ = "auth_tokens"

    id = Column(Integer, primary_key=True, autoincrement=False, default=AUTH_TOKEN_ROW_ID)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expiry = Column(DateTime, nullable=True)
    scope = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    def __repr__(self):
        return f"<AuthToken expires {self.expiry}>"


class UserPreference(Base):
    """Per-user display and notification preferences."""

    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, unique=True)
    timezone = Column(Text, nullable=False, default="Europe/Kiev")
    notifications = Column(Boolean, nullable=False, default=True)
    language = Column(Text, nullable=False, default="en")
    preferred_times = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    def __repr__(self):
        return f"<UserPreference {self.user_id}>"


class MigrationRecord(Base):
    """Applied schema migration."""

    __tablename__ = "migrations"

    version = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(Text, nullable=False)
    checksum = Column(Text, nullable=False)
    executed_at = Column(DateTime, nullable=False, default=utcnow, server_default=func.now())

    def __repr__(self):
        return f"<MigrationRecord {self.version} {self.name}>"
