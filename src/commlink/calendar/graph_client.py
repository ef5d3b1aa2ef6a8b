"""Microsoft Graph calendar client for room and user mailboxes."""

import logging
from typing import Any, Mapping, Optional, Sequence

import requests

from ..auth.base import AuthProvider
from ..auth.msal_auth import ClientCredentialsAuthProvider, require_credentials
from ..config import GraphConfig
from ..utils.date_utils import DateLike, format_graph_datetime, format_graph_utc
from ..utils.exceptions import (
    CommlinkError,
    NotFoundError,
    RemoteError,
    TransportError,
)
from ..utils.translations import NULL_TRANSLATOR, Translator

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
LIST_LIMIT = 100
AVAILABILITY_INTERVAL = 15
# Narrow free/busy windows so back-to-back bookings do not count as overlap
SCHEDULE_MARGIN_SECONDS = 60
REQUIRED_EVENT_FIELDS = ("subject", "start", "end")
EVENT_NOT_FOUND = "Event not found. iCalUId: "


class GraphCalendarClient:
    """
    Create, update, delete and query events in a mailbox calendar.

    Events are addressed by their iCalUId, the identifier that travels with
    invites, and resolved to Graph's own event id before update or delete.
    Event payloads are Graph ``event`` resources passed through as-is, e.g.::

        {
            "subject": "Parent evening",
            "body": {"contentType": "HTML", "content": "<p>Room 12</p>"},
            "start": {"dateTime": "2025-01-01T10:00:00", "timeZone": "UTC"},
            "end": {"dateTime": "2025-01-01T11:00:00", "timeZone": "UTC"},
            "location": {"displayName": "Room 12"},
            "attendees": [
                {
                    "emailAddress": {"address": "parent@example.com", "name": "Parent"},
                    "type": "required",
                }
            ],
        }

    The access token is fetched on the first call and reused. A 401 response
    clears it and triggers one re-authentication and retry.
    """

    def __init__(
        self,
        config: GraphConfig,
        auth_provider: Optional[AuthProvider] = None,
        session: Optional[requests.Session] = None,
        translator: Translator = NULL_TRANSLATOR,
        access_token: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Graph configuration
            auth_provider: Token source (client credentials from config when omitted)
            session: HTTP session to use
            translator: Message catalog for user-facing errors
            access_token: Token to start with, skipping the first authentication

        Raises:
            ConfigurationError: If tenant, client id or secret is missing
        """
        require_credentials(config, translator)

        self._ = translator
        self.auth_provider = auth_provider or ClientCredentialsAuthProvider(
            config, translator=translator
        )
        self.session = session or requests.Session()
        self.timeout = config.timeout
        self.access_token = access_token

    def authenticate(self) -> None:
        """Fetch a new access token. Fatal for the current call on failure."""
        self.access_token = self.auth_provider.acquire_token()
        logger.debug("Graph access token stored")

    def set_access_token(self, access_token: Optional[str]) -> None:
        self.access_token = access_token

    def reset_access_token(self) -> None:
        """Drop the current token and any cached copy held by the provider."""
        self.access_token = None
        self.auth_provider.clear_cache()

    def add_event(self, location_address: str, event: Mapping[str, Any]) -> dict[str, Any]:
        """
        Create an event in the mailbox calendar.

        Returns:
            The created Graph event resource
        """
        missing = [name for name in REQUIRED_EVENT_FIELDS if name not in event]
        if missing:
            raise ValueError(f"Event payload is missing: {', '.join(missing)}")

        self._ensure_token()
        resp = self._request("POST", f"users/{location_address}/calendar/events", json=dict(event))
        created = self._json(resp)
        logger.info(f"Created event '{event.get('subject')}' for {location_address}")
        return created

    def update_event(
        self, location_address: str, ical_uid: str, event: Mapping[str, Any]
    ) -> dict[str, Any]:
        """
        Patch the event identified by ``ical_uid`` with the given fields.

        Raises:
            NotFoundError: If no event carries that iCalUId
        """
        self._ensure_token()
        event_id = self._get_event_id(location_address, ical_uid)
        resp = self._request("PATCH", f"users/{location_address}/events/{event_id}", json=dict(event))
        logger.info(f"Updated event {ical_uid} for {location_address}")
        return self._json(resp)

    def delete_event(self, location_address: str, ical_uid: str) -> None:
        """
        Delete the event identified by ``ical_uid``.

        Raises:
            NotFoundError: If no event carries that iCalUId
        """
        self._ensure_token()
        event_id = self._get_event_id(location_address, ical_uid)
        self._request("DELETE", f"users/{location_address}/events/{event_id}")
        logger.info(f"Deleted event {ical_uid} for {location_address}")

    def event_exists(self, location_address: str, ical_uid: str) -> bool:
        self._ensure_token()
        try:
            self._get_event_id(location_address, ical_uid)
        except NotFoundError:
            return False
        return True

    def is_location_free(
        self,
        location_addresses: Sequence[str],
        start: DateLike,
        end: DateLike,
        time_zone: str = "UTC",
    ) -> bool:
        """
        Check whether the first location has nothing booked between start and end.

        The window is shrunk by a minute on each side so bookings that merely
        touch it are ignored.

        Args:
            location_addresses: Mailboxes to query; the first one decides
            start: Window start (datetime or ISO string)
            end: Window end (datetime or ISO string)
            time_zone: Zone the window is expressed in

        Returns:
            True if the first location has no schedule items in the window
        """
        if not location_addresses:
            raise ValueError("At least one location address is required")

        self._ensure_token()
        payload = {
            "schedules": list(location_addresses),
            "startTime": {
                "dateTime": format_graph_datetime(start, time_zone, SCHEDULE_MARGIN_SECONDS),
                "timeZone": time_zone,
            },
            "endTime": {
                "dateTime": format_graph_datetime(end, time_zone, -SCHEDULE_MARGIN_SECONDS),
                "timeZone": time_zone,
            },
            "availabilityViewInterval": AVAILABILITY_INTERVAL,
        }
        resp = self._request(
            "POST", f"users/{location_addresses[0]}/calendar/getSchedule", json=payload
        )
        schedules = self._json(resp).get("value") or [{}]
        items = schedules[0].get("scheduleItems") or []
        logger.debug(f"{location_addresses[0]} has {len(items)} item(s) in window")
        return len(items) == 0

    def list_events(
        self,
        location_address: str,
        start: DateLike,
        end: DateLike,
        time_zone: str = "UTC",
    ) -> list[dict[str, Any]]:
        """
        List up to 100 events in the window, earliest first.

        Naive bounds are wall time in ``time_zone``. The window is sent as
        UTC; ``time_zone`` only controls how returned times are rendered.

        Returns:
            Graph event resources, empty when nothing matches
        """
        self._ensure_token()
        params = {
            "startDateTime": format_graph_utc(start, time_zone),
            "endDateTime": format_graph_utc(end, time_zone),
            "$orderby": "start/dateTime",
            "$top": LIST_LIMIT,
        }
        headers = {"Prefer": f'outlook.timezone="{time_zone}"'}
        resp = self._request(
            "GET", f"users/{location_address}/calendarView", params=params, headers=headers
        )
        events = self._json(resp).get("value") or []
        logger.info(f"Found {len(events)} event(s) for {location_address}")
        return events

    def _ensure_token(self) -> None:
        if self.access_token is None:
            self.authenticate()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> requests.Response:
        url = f"{GRAPH_BASE}/{path}"
        retried = False
        while True:
            self._ensure_token()
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers={**self._headers(), **(headers or {})},
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise TransportError(f"Graph request {method} {path} failed: {e}") from e

            if resp.status_code == 401 and not retried:
                logger.warning("Graph rejected the access token, re-authenticating")
                self.reset_access_token()
                retried = True
                continue
            break

        if not resp.ok:
            raise RemoteError(
                f"Graph request {method} {path} failed with {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise CommlinkError(f"Graph returned invalid JSON: {e}") from e

    def _get_event_id(self, location_address: str, ical_uid: str) -> str:
        # OData string literals escape a quote by doubling it
        literal = ical_uid.replace("'", "''")
        resp = self._request(
            "GET",
            f"users/{location_address}/events",
            params={"$filter": f"iCalUId eq '{literal}'", "$select": "id"},
        )
        events = self._json(resp).get("value") or []
        if events and events[0].get("id"):
            return events[0]["id"]

        message = f"{self._(EVENT_NOT_FOUND)}{ical_uid}"
        logger.critical(message)
        raise NotFoundError(message)
