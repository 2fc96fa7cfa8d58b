"""Shared fixtures for the booking engine tests."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from booking_bot.core.scheduling.store import InMemoryAppointmentStore
from booking_bot.core.scheduling.types import Professional, ServiceOffering

BA_TZ = "America/Argentina/Buenos_Aires"

# Monday 2026-10-19 09:00 in Buenos Aires (UTC-3, no DST)
MONDAY_9AM = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

PROFESSIONAL_CONTACT = "5491100000000"


class FakeClock:
    """Settable clock shared by every component under test."""

    def __init__(self, now: datetime = MONDAY_9AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def no_redis():
    """Redis provider for tests: always unavailable."""
    return None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def professional():
    return Professional(
        id=uuid.uuid4(),
        name="Dra. Gómez",
        timezone=BA_TZ,
        contact=PROFESSIONAL_CONTACT,
    )


@pytest.fixture
def store(professional):
    store = InMemoryAppointmentStore()
    store.add_professional(professional)
    return store


def make_service(professional, name="Consulta", duration=30, price="15000"):
    return ServiceOffering(
        id=uuid.uuid4(),
        professional_id=professional.id,
        name=name,
        duration_minutes=duration,
        price=Decimal(price) if price else None,
    )
