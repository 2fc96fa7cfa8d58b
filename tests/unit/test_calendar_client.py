"""Tests for the Google Calendar HTTP client."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from booking_bot.core.scheduling.calendar_client import CalendarClientError, GoogleCalendarClient
from booking_bot.core.scheduling.types import Slot

START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
END = datetime(2026, 10, 26, 12, 0, tzinfo=timezone.utc)


def make_client(handler):
    return GoogleCalendarClient(
        access_token="test-token",
        base_url="https://calendar.test/v3",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestGetBusy:
    """Free/busy queries."""

    @pytest.mark.asyncio
    async def test_parses_busy_periods(self):
        """Busy periods come back as UTC slots."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "calendars": {
                    "primary": {
                        "busy": [
                            {"start": "2026-10-19T10:00:00-03:00", "end": "2026-10-19T11:00:00-03:00"},
                            {"start": "garbage"},
                        ]
                    }
                }
            })

        client = make_client(handler)
        busy = await client.get_busy("primary", START, END)
        await client.close()

        assert busy == [Slot(
            start=datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc),
            end=datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc),
        )]

        request = requests[0]
        assert request.url.path == "/v3/freeBusy"
        assert request.headers["Authorization"] == "Bearer test-token"
        body = json.loads(request.content)
        assert body["items"] == [{"id": "primary"}]
        assert body["timeMin"] == START.isoformat()

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = make_client(lambda request: httpx.Response(500, text="backend error"))

        with pytest.raises(CalendarClientError):
            await client.get_busy("primary", START, END)

    @pytest.mark.asyncio
    async def test_calendar_errors(self):
        """Per-calendar errors (e.g. notFound) are failures, not empty calendars."""
        client = make_client(lambda request: httpx.Response(200, json={
            "calendars": {"primary": {"errors": [{"domain": "global", "reason": "notFound"}]}}
        }))

        with pytest.raises(CalendarClientError):
            await client.get_busy("primary", START, END)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(CalendarClientError):
            await client.get_busy("primary", START, END)


class TestCreateEvent:
    """Event creation with client-supplied ids."""

    @pytest.mark.asyncio
    async def test_created(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "abc123", "status": "confirmed"})

        client = make_client(handler)
        event_id = await client.create_event("primary", "abc123", "Turno: Ana", START, END)

        assert event_id == "abc123"
        assert requests[0].url.path == "/v3/calendars/primary/events"
        body = json.loads(requests[0].content)
        assert body["id"] == "abc123"
        assert body["summary"] == "Turno: Ana"
        assert body["start"]["dateTime"] == START.isoformat()

    @pytest.mark.asyncio
    async def test_duplicate_is_reused(self):
        """409 means the event already exists under our id."""
        client = make_client(lambda request: httpx.Response(409, json={"error": {"code": 409}}))

        assert await client.create_event("primary", "abc123", "Turno", START, END) == "abc123"

    @pytest.mark.asyncio
    async def test_rejected(self):
        client = make_client(lambda request: httpx.Response(403, json={"error": {"code": 403}}))

        with pytest.raises(CalendarClientError):
            await client.create_event("primary", "abc123", "Turno", START, END)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)

        with pytest.raises(CalendarClientError):
            await client.create_event("primary", "abc123", "Turno", START, END)
