import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional

import httplib2
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError as AuthTransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsum.config import Settings
from calsum.errors import AuthError, TransportError
from calsum.summarize import EventPage, EventRecord

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

# Upper bound the Calendar API accepts for events.list
PAGE_SIZE = 2500

logger = logging.getLogger(__name__)


def _save_token(token_path: str, creds: Credentials) -> None:
    logger.info(f"Saving credential file to: {token_path}")
    fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as token:
        token.write(creds.to_json())


def get_credentials(settings: Settings) -> Credentials:
    creds = None
    token_path = settings.token_path

    if os.path.exists(token_path):
        try:
            creds = Credentials.from_authorized_user_file(token_path, SCOPES)
        except ValueError as e:
            logger.info(f"Saved token not usable: {e}")

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.info(f"Failed to refresh saved token: {e}")
            creds = None
        except AuthTransportError as e:
            raise TransportError(f"could not reach Google to refresh the saved token: {e}") from e
    else:
        creds = None

    if creds is None:
        if not os.path.exists(settings.credentials_path):
            raise AuthError(
                f"OAuth client secrets not found at {settings.credentials_path}. "
                "Create OAuth credentials for the Google Calendar API, download them "
                "there (or set CALSUM_CREDENTIALS) and run again to re-authenticate."
            )
        try:
            flow = InstalledAppFlow.from_client_secrets_file(
                settings.credentials_path, SCOPES
            )
            creds = flow.run_local_server(port=0)
        except Exception as e:
            raise AuthError(f"authorization flow failed: {e}") from e

    _save_token(token_path, creds)
    return creds


def get_events_service(settings: Settings):
    creds = get_credentials(settings)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # Handle trailing Z
        if value.endswith("Z"):
            dt = datetime.fromisoformat(value[:-1] + "+00:00")
        else:
            dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return None
    return dt


def parse_event(item: Dict[str, Any]) -> EventRecord:
    """
    Convert an events.list item into an EventRecord.
    All-day events carry only a "date", so their start and end come back None.
    """
    start = item.get("start") or {}
    end = item.get("end") or {}
    return EventRecord(
        label=item.get("summary") or "",
        start=_parse_datetime(start.get("dateTime")),
        end=_parse_datetime(end.get("dateTime")),
    )


class GoogleCalendarEventSource:
    def __init__(self, service, calendar_id: str = "primary"):
        self.service = service
        self.calendar_id = calendar_id

    def list_events(
        self, time_min: datetime, time_max: datetime, page_token: str
    ) -> EventPage:
        params: Dict[str, Any] = {
            "calendarId": self.calendar_id,
            "showDeleted": False,
            "singleEvents": True,
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "maxResults": PAGE_SIZE,
            "orderBy": "startTime",
        }
        if page_token:
            params["pageToken"] = page_token

        try:
            events_result = self.service.events().list(**params).execute()
        except RefreshError as e:
            raise AuthError(f"access token could not be refreshed: {e}") from e
        except AuthTransportError as e:
            raise TransportError(f"could not reach Google to refresh the access token: {e}") from e
        except HttpError as e:
            if e.resp.status == 401:
                raise AuthError(f"calendar access was rejected: {e}") from e
            raise TransportError(f"retrieve the user's events: {e}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise TransportError(f"retrieve the user's events: {e}") from e

        return EventPage(
            records=[parse_event(ev) for ev in events_result.get("items", [])],
            next_page_token=events_result.get("nextPageToken") or "",
        )
