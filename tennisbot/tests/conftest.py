"""Shared fixtures: temp-dir SQLite databases and fake collaborators."""
import pytest

from tennisbot.core.exceptions import ExternalServiceError
from tennisbot.db.migrate import MigrationManager
from tennisbot.db.repository import BookingStore
from tennisbot.db.session import Database
from tennisbot.tests.fakes import FakeCalendar, FakeNotifier, make_settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def database(settings):
    db = Database.from_settings(settings)
    MigrationManager(db).run_migrations()
    yield db
    db.dispose()


@pytest.fixture
def store(database, settings):
    return BookingStore(database, settings.tz)


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def calendar_unavailable():
    return ExternalServiceError("Calendar API unreachable while trying to create calendar event.")
