"""Google Calendar API integration service."""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from tennisbot.core.exceptions import AuthenticationError, ExternalServiceError
from tennisbot.db.models import utcnow
from tennisbot.db.repository import BookingStore
from tennisbot.services.slots import BusyInterval

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = [
    'https://www.googleapis.com/auth/calendar',
    'https://www.googleapis.com/auth/calendar.events',
]
TOKEN_REQUEST_TIMEOUT = 30


def parse_google_datetime(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Calendar API."""
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class CalendarService:
    """Service for interacting with Google Calendar API."""

    def __init__(self, settings, store: BookingStore):
        """Initialize the Calendar service."""
        self.settings = settings
        self.store = store
        self.calendar_id = settings.calendar_id

    # OAuth

    def get_auth_url(self, state: Optional[str] = None) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        params = {
            'client_id': self.settings.google_client_id,
            'redirect_uri': self.settings.google_redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(SCOPES),
            'access_type': 'offline',
            'prompt': 'consent',
        }
        if state:
            params['state'] = state
        return requests.Request('GET', GOOGLE_AUTH_URL, params=params).prepare().url

    def exchange_auth_code(self, code: str):
        """Exchange an authorization code for tokens and persist them."""
        try:
            response = requests.post(
                GOOGLE_TOKEN_URL,
                data={
                    'code': code,
                    'client_id': self.settings.google_client_id,
                    'client_secret': self.settings.google_client_secret,
                    'redirect_uri': self.settings.google_redirect_uri,
                    'grant_type': 'authorization_code',
                },
                timeout=TOKEN_REQUEST_TIMEOUT,
            )
        except requests.RequestException as error:
            logger.error(f"Token exchange request failed: {error}", exc_info=True)
            raise ExternalServiceError("Could not reach the Google token endpoint.") from error

        if response.status_code != 200:
            logger.error(f"Authorization code exchange failed: {response.text}")
            raise AuthenticationError("Authorization code exchange failed.")

        tokens = response.json()
        refresh_token = tokens.get('refresh_token')
        if not refresh_token:
            existing = self.store.get_auth_tokens()
            refresh_token = existing.refresh_token if existing else None
        if not refresh_token:
            raise AuthenticationError("No refresh token received. Re-authorize with the consent prompt.")

        expiry = utcnow() + timedelta(seconds=tokens.get('expires_in', 3600))
        logger.info("Google Calendar authorization completed")
        return self.store.save_auth_tokens(
            access_token=tokens['access_token'],
            refresh_token=refresh_token,
            expiry=expiry,
            scope=tokens.get('scope'),
        )

    def _load_credentials(self) -> Credentials:
        token = self.store.get_auth_tokens()
        if token is None:
            raise AuthenticationError("Google Calendar is not authorized. Visit /auth to connect it.")
        return Credentials(
            token=token.access_token,
            refresh_token=token.refresh_token,
            token_uri=GOOGLE_TOKEN_URL,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=token.scope.split() if token.scope else SCOPES,
            expiry=token.expiry,
        )

    def refresh_access_token(self, credentials: Optional[Credentials] = None) -> Credentials:
        """Refresh the access token and replace the stored credential set."""
        credentials = credentials or self._load_credentials()
        try:
            credentials.refresh(Request())
        except GoogleAuthError as error:
            logger.error(f"Error refreshing token: {error}", exc_info=True)
            raise AuthenticationError("Authentication failed. Please re-authenticate.") from error

        self.store.save_auth_tokens(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expiry=credentials.expiry,
            scope=' '.join(credentials.scopes) if credentials.scopes else None,
        )
        logger.info("Google Calendar access token refreshed")
        return credentials

    def ensure_credentials(self) -> Credentials:
        """Stored credentials, refreshed first when expired."""
        credentials = self._load_credentials()
        if not credentials.valid:
            credentials = self.refresh_access_token(credentials)
        return credentials

    # Calendar API

    def _execute(self, make_request: Callable[[Any], Any], action: str) -> Any:
        service = build('calendar', 'v3', credentials=self.ensure_credentials(), cache_discovery=False)
        try:
            return make_request(service).execute()
        except HttpError as error:
            logger.error(f"Failed to {action}: {error}", exc_info=True)
            raise ExternalServiceError(f"Calendar API error while trying to {action}.") from error
        except OSError as error:
            logger.error(f"Network error while trying to {action}: {error}", exc_info=True)
            raise ExternalServiceError(f"Calendar API unreachable while trying to {action}.") from error

    def _localize(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = self.settings.tz.localize(value)
        return value.isoformat()

    def list_busy_intervals(self, time_min: datetime, time_max: datetime) -> List[BusyInterval]:
        """Busy periods of the configured calendar, ordered by start."""
        body = {
            'timeMin': self._localize(time_min),
            'timeMax': self._localize(time_max),
            'timeZone': self.settings.timezone,
            'items': [{'id': self.calendar_id}],
        }
        result = self._execute(lambda s: s.freebusy().query(body=body), "query free/busy")
        calendar = result.get('calendars', {}).get(self.calendar_id, {})
        if calendar.get('errors'):
            logger.error(f"Free/busy query returned errors: {calendar['errors']}")
            raise ExternalServiceError("Calendar API reported errors for the free/busy query.")

        intervals = [
            BusyInterval(parse_google_datetime(b['start']), parse_google_datetime(b['end']))
            for b in calendar.get('busy', [])
        ]
        intervals.sort(key=lambda i: i.start)
        return intervals

    def create_event(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        timezone: str,
    ) -> str:
        """Create an event; naive datetimes are wall-clock times in ``timezone``."""
        body = {
            'summary': summary,
            'description': description,
            'start': {'dateTime': start.isoformat(), 'timeZone': timezone},
            'end': {'dateTime': end.isoformat(), 'timeZone': timezone},
        }
        event = self._execute(
            lambda s: s.events().insert(calendarId=self.calendar_id, body=body),
            "create calendar event",
        )
        logger.info(f"Created calendar event: {event.get('id')}")
        return event['id']

    def update_event(self, event_id: str, fields: Dict[str, Any]) -> None:
        self._execute(
            lambda s: s.events().patch(calendarId=self.calendar_id, eventId=event_id, body=fields),
            f"update event {event_id}",
        )
        logger.info(f"Updated calendar event: {event_id}")

    def delete_event(self, event_id: str) -> None:
        """Delete a calendar event."""
        service = build('calendar', 'v3', credentials=self.ensure_credentials(), cache_discovery=False)
        try:
            service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()
            logger.info(f"Deleted event from calendar: {event_id}")
        except HttpError as error:
            if error.resp.status in (404, 410):
                logger.warning(f"Event {event_id} not found in calendar, likely already deleted.")
            else:
                logger.error(f"Failed to delete event {event_id}: {error}", exc_info=True)
                raise ExternalServiceError(f"Calendar API error while deleting event {event_id}.") from error
        except OSError as error:
            logger.error(f"Network error while deleting event {event_id}: {error}", exc_info=True)
            raise ExternalServiceError(f"Calendar API unreachable while deleting event {event_id}.") from error
