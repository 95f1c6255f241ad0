"""Error types raised by the booking service."""


class BookingServiceError(Exception):
    """Base class for all errors raised by this package."""


class DuplicateSlotError(BookingServiceError):
    """The requested (date, time) slot is already held by another booking."""

    def __init__(self, session_date, session_time):
        self.session_date = session_date
        self.session_time = session_time
        super().__init__(f"This time slot is already booked: {session_date} {session_time}")


class BookingNotFoundError(BookingServiceError):
    """Unknown booking id, booking not owned by the actor, or booking not active."""


class InvalidSlotError(BookingServiceError):
    """Slot lies outside the working-hours template or in the past."""


class InvalidStatusTransition(BookingServiceError):
    """Attempt to move a booking out of a terminal status."""


class AuthenticationError(BookingServiceError):
    """Calendar credentials are missing or could not be refreshed."""


class ExternalServiceError(BookingServiceError):
    """The external calendar API failed or timed out."""


class BackupIntegrityError(BookingServiceError):
    """A backup file is missing, unreadable or fails checksum verification."""


class MigrationError(BookingServiceError):
    """Migration set is inconsistent or an applied migration changed."""
