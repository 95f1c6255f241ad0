import asyncio
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from tennisbot.core.exceptions import ExternalServiceError
from tennisbot.main import create_app
from tennisbot.tests.fakes import FakeCalendar, FakeNotifier

FUTURE = (date.today() + timedelta(days=3)).isoformat()


@pytest.fixture
def fake_calendar():
    calendar = FakeCalendar()
    calendar.get_auth_url = lambda: "https://accounts.google.com/o/oauth2/v2/auth?client_id=client-id"
    calendar.exchanged = []
    calendar.exchanged_on_loop = []

    def exchange_auth_code(code):
        try:
            asyncio.get_running_loop()
            calendar.exchanged_on_loop.append(True)
        except RuntimeError:
            calendar.exchanged_on_loop.append(False)
        calendar.exchanged.append(code)

    calendar.exchange_auth_code = exchange_auth_code
    return calendar


@pytest.fixture
def client(settings, fake_calendar):
    app = create_app(settings=settings, calendar=fake_calendar, notifier=FakeNotifier())
    with TestClient(app) as test_client:
        yield test_client


def book(client, user_id="42", time="14:00"):
    return client.post("/api/v1/bookings", json={
        "user_id": user_id, "display_name": "alice", "date": FUTURE, "time": time,
    })


def test_healthz(client):
    response = client.get("/api/v1/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_status_page(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "Tennis Booking Bot" in response.text


def test_auth_redirects_to_consent(client):
    response = client.get("/auth", follow_redirects=False)
    assert response.status_code in (302, 307)
    assert response.headers["location"].startswith("https://accounts.google.com/")


def test_auth_callback(client, fake_calendar):
    assert client.get("/auth/callback").status_code == 400
    response = client.get("/auth/callback", params={"code": "abc"})
    assert response.status_code == 200
    assert fake_calendar.exchanged == ["abc"]


def test_auth_callback_exchanges_code_off_the_event_loop(client, fake_calendar):
    client.get("/auth/callback", params={"code": "abc"})
    assert fake_calendar.exchanged_on_loop == [False]


def test_book_and_fetch(client):
    response = book(client)
    assert response.status_code == 201
    booking_id = response.json()["id"]

    booking = client.get(f"/api/v1/bookings/{booking_id}").json()
    assert booking["status"] == "active"
    assert booking["session_time"] == "14:00"

    history = client.get(f"/api/v1/bookings/{booking_id}/history").json()
    assert [h["action"] for h in history] == ["created"]


def test_double_booking_conflict(client):
    assert book(client, "42").status_code == 201
    assert book(client, "43").status_code == 409


def test_invalid_slot_is_unprocessable(client):
    assert book(client, time="12:00").status_code == 422
    assert book(client, time="noon").status_code == 422


def test_calendar_failure_is_bad_gateway(client, fake_calendar):
    fake_calendar.fail_create = ExternalServiceError("Calendar API error while trying to create calendar event.")
    response = book(client)
    assert response.status_code == 502
    assert "may no longer be available" in response.json()["detail"]


def test_update_and_cancel(client):
    booking_id = book(client).json()["id"]

    patched = client.patch(f"/api/v1/bookings/{booking_id}", json={"actor_id": "42", "notes": "court 2"})
    assert patched.json()["notes"] == "court 2"
    assert client.patch(f"/api/v1/bookings/{booking_id}", json={"actor_id": "99", "notes": "x"}).status_code == 404

    cancelled = client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"actor_id": "42"})
    assert cancelled.json()["status"] == "cancelled"
    again = client.post(f"/api/v1/bookings/{booking_id}/cancel", json={"actor_id": "42"})
    assert again.status_code == 404


def test_user_bookings(client):
    book(client, "42", "14:00")
    book(client, "42", "09:00")
    book(client, "43", "15:00")
    bookings = client.get("/api/v1/users/42/bookings").json()
    assert [b["session_time"] for b in bookings] == ["09:00", "14:00"]


def test_slots_exclude_booked_time(client):
    book(client)
    times = [s["time"] for s in client.get(f"/api/v1/slots/{FUTURE}").json()]
    assert "14:00" not in times
    assert "15:00" in times
    assert client.get("/api/v1/slots", params={"days": 7}).status_code == 200
    assert client.get("/api/v1/slots/days", params={"days": 7}).status_code == 200
    assert client.get("/api/v1/slots/not-a-date").status_code == 422


def test_preferences(client):
    assert client.get("/api/v1/users/42/preferences").status_code == 404
    saved = client.put("/api/v1/users/42/preferences", json={"language": "uk"}).json()
    assert saved["language"] == "uk"
    assert client.get("/api/v1/users/42/preferences").json()["language"] == "uk"


def test_statistics(client):
    book(client)
    stats = client.get("/api/v1/statistics", params={"days": 30}).json()
    assert stats["total_bookings"] == 1
    assert stats["active_bookings"] == 1


def test_slots_for_past_date_are_empty(client):
    response = client.get("/api/v1/slots/2024-06-01")
    assert response.status_code == 200
    assert response.json() == []
