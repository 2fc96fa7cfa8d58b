"""
HTTP client for the external calendar.

Google Calendar REST API v3 is used for:
- Free/busy queries over a time range
- Creating events for committed appointments
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import httpx

from booking_bot.config import get_settings
from booking_bot.core.errors import UpstreamUnavailable
from booking_bot.core.scheduling.types import Slot

logger = logging.getLogger(__name__)


class CalendarClientError(UpstreamUnavailable):
    """Raised when the calendar provider cannot be reached or rejects a call."""
    pass


class CalendarProvider(ABC):
    """External calendar contract."""

    name: str = "calendar"

    @abstractmethod
    async def get_busy(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Slot]:
        """Busy intervals reported by the calendar within [start, end)."""
        pass

    @abstractmethod
    async def create_event(
        self,
        calendar_id: str,
        event_id: str,
        summary: str,
        start: datetime,
        end: datetime,
    ) -> str:
        """Create an event and return its external id.

        Creating an event whose id already exists must return that id
        instead of creating a second event.
        """
        pass


class GoogleCalendarClient(CalendarProvider):
    """
    Google Calendar client.

    Endpoints:
    - POST /freeBusy - Busy intervals for a calendar
    - POST /calendars/{id}/events - Create event (client-supplied id)
    """

    name = "google"

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            access_token: OAuth bearer token (defaults to settings)
            base_url: API base URL (defaults to settings)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (for testing)
        """
        settings = get_settings()
        self.access_token = access_token or settings.google_calendar_access_token
        self.base_url = base_url or settings.google_calendar_base_url
        self.timeout = timeout or settings.calendar_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_busy(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Slot]:
        client = await self._get_client()

        payload = {
            "timeMin": start.isoformat(),
            "timeMax": end.isoformat(),
            "items": [{"id": calendar_id}],
        }

        try:
            response = await client.post("/freeBusy", json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Free/busy query failed for {calendar_id}: {e}")
            raise CalendarClientError(f"Free/busy query failed: {e}") from e

        calendar = data.get("calendars", {}).get(calendar_id, {})
        if calendar.get("errors"):
            raise CalendarClientError(f"Free/busy errors: {calendar['errors']}")

        busy = []
        for period in calendar.get("busy", []):
            try:
                busy.append(Slot.from_dict(period))
            except (KeyError, ValueError):
                logger.warning(f"Skipping malformed busy period: {period}")
        return busy

    async def create_event(
        self,
        calendar_id: str,
        event_id: str,
        summary: str,
        start: datetime,
        end: datetime,
    ) -> str:
        client = await self._get_client()

        payload = {
            "id": event_id,
            "summary": summary,
            "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": end.isoformat(), "timeZone": "UTC"},
        }

        try:
            response = await client.post(f"/calendars/{calendar_id}/events", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to create event {event_id}: {e}")
            raise CalendarClientError(f"Create event failed: {e}") from e

        # Event ids are ours, so 409 means a previous call already created it
        if response.status_code == 409:
            logger.info(f"Event {event_id} already exists, reusing it")
            return event_id

        if response.status_code not in (200, 201):
            logger.warning(f"Calendar error {response.status_code}: {response.text}")
            raise CalendarClientError(
                f"Create event failed with status {response.status_code}"
            )

        try:
            return response.json().get("id") or event_id
        except ValueError:
            return event_id


# Singleton
_client: Optional[GoogleCalendarClient] = None


def get_calendar_client() -> GoogleCalendarClient:
    """Get singleton GoogleCalendarClient."""
    global _client
    if _client is None:
        _client = GoogleCalendarClient()
    return _client
