"""Tests for the HTTP surface."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from booking_bot.core.conversation.factory import get_orchestrator
from booking_bot.core.conversation.orchestrator import ConversationOrchestrator
from booking_bot.core.conversation.session import ConversationSessionStore
from booking_bot.core.extraction.extractor import TextExtractor
from booking_bot.core.scheduling.availability import AvailabilityEngine
from booking_bot.core.scheduling.committer import BookingCommitter
from booking_bot.core.scheduling.pending import InMemoryPendingSelectionStore
from booking_bot.infra.notifications import LoggingSender
from booking_bot.main import app
from tests.conftest import PROFESSIONAL_CONTACT, make_service, no_redis


@pytest.fixture
def sender():
    return LoggingSender()


@pytest.fixture
def client(store, professional, clock, sender):
    """API client backed by an in-memory booking engine."""
    store.add_service(make_service(professional))
    pending = InMemoryPendingSelectionStore(ttl_seconds=600, clock=clock)
    orchestrator = ConversationOrchestrator(
        store=store,
        extractor=TextExtractor(),
        availability=AvailabilityEngine(store, mode="real", clock=clock),
        pending_store=pending,
        committer=BookingCommitter(store, pending, initial_status="confirmed", clock=clock),
        sessions=ConversationSessionStore(redis_provider=no_redis),
        sender=sender,
        clock=clock,
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


def message(text, **extra):
    payload = {"from": "whatsapp:+5491122223333", "to": PROFESSIONAL_CONTACT, "text": text, "name": "Ana"}
    payload.update(extra)
    return payload


class TestMessagesEndpoint:
    """POST /messages"""

    def test_offer_then_book(self, client, store, sender):
        offer = client.post("/messages", json=message("turno el martes 14:30"))

        assert offer.status_code == 200
        body = offer.json()
        assert body["state"] == "awaiting_selection"
        assert "1) Mar 20/10 14:30" in body["reply"]
        assert body["delivered"] is True

        booked = client.post("/messages", json=message("1"))

        body = booked.json()
        assert body["state"] == "committed"
        assert body["appointment_id"] is not None
        assert body["reply"].startswith("Listo Ana")
        assert "Te avisamos" not in body["reply"]
        assert len(store.appointments) == 1
        assert len(sender.sent) == 2

    def test_non_text_is_ignored(self, client, sender):
        response = client.post("/messages", json=message(None, type="image"))

        assert response.status_code == 200
        body = response.json()
        assert body["reply"] is None
        assert body["error"] == "non_text"
        assert not sender.sent

    def test_sender_without_digits(self, client):
        response = client.post("/messages", json=message("hola", **{"from": "anonymous"}))

        assert response.status_code == 400

    def test_missing_fields(self, client):
        response = client.post("/messages", json={"text": "hola"})

        assert response.status_code == 422
        assert response.json()["error"] == "Validation error"

    def test_text_too_long(self, client):
        response = client.post("/messages", json=message("a" * 2001))

        assert response.status_code == 422


class TestHealthEndpoints:
    """Health and readiness."""

    def test_health(self):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "calendar_mode" in body["engine"]

    def test_ready_with_redis_degraded(self):
        with patch(
            "booking_bot.api.routes.health.check_db_health", new=AsyncMock(return_value=True)
        ), patch(
            "booking_bot.api.routes.health.check_redis_health", new=AsyncMock(return_value=False)
        ), patch("booking_bot.api.routes.health.settings") as mock_settings:
            mock_settings.store_backend = "sql"
            response = TestClient(app).get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"database": "ok", "redis": "degraded"}

    def test_not_ready_without_database(self):
        with patch(
            "booking_bot.api.routes.health.check_db_health", new=AsyncMock(return_value=False)
        ), patch(
            "booking_bot.api.routes.health.check_redis_health", new=AsyncMock(return_value=True)
        ), patch("booking_bot.api.routes.health.settings") as mock_settings:
            mock_settings.store_backend = "sql"
            response = TestClient(app).get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
