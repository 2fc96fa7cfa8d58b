"""Tests for the SQLAlchemy appointment store that need no database."""

import uuid
from datetime import datetime, time, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from booking_bot.core.errors import PersistenceError
from booking_bot.core.scheduling.types import (
    BLOCKING_STATUSES,
    AppointmentStatus,
    Modality,
    NewAppointment,
)
from booking_bot.infra.appointment_store import (
    SqlAppointmentStore,
    _appointment,
    _blocking_query,
    _professional,
)
from booking_bot.models import database as orm

START = datetime(2026, 10, 20, 17, 30, tzinfo=timezone.utc)
END = datetime(2026, 10, 20, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def broken_store():
    """Store whose every session fails to open."""
    factory = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
    return SqlAppointmentStore(session_factory=factory)


class TestRowMapping:
    """ORM rows to domain objects."""

    def test_professional(self):
        row = orm.Professional(
            id=uuid.uuid4(),
            name="Dra. Gómez",
            timezone="America/Argentina/Cordoba",
            contact="5493510000000",
            work_start=time(8, 0),
            work_end=time(13, 0),
            work_days=[0, 2, 4],
        )

        professional = _professional(row)

        assert professional.timezone == "America/Argentina/Cordoba"
        assert professional.working_hours.start == time(8, 0)
        assert professional.working_hours.days == frozenset({0, 2, 4})
        assert professional.calendar_id is None

    def test_appointment(self):
        row = orm.Appointment(
            id=uuid.uuid4(),
            professional_id=uuid.uuid4(),
            counterpart_id=uuid.uuid4(),
            start_at=START,
            end_at=END,
            status=AppointmentStatus.CONFIRMED,
            modality=Modality.REMOTE,
            price=Decimal("15000.00"),
        )

        appointment = _appointment(row)

        assert (appointment.start, appointment.end) == (START, END)
        assert appointment.is_blocking
        assert appointment.price == Decimal("15000.00")


class TestQueries:
    """Query construction."""

    def test_blocking_query_excludes_cancelled(self):
        compiled = _blocking_query(uuid.uuid4(), START, END).compile(dialect=postgresql.dialect())

        statuses = [v for v in compiled.params.values() if isinstance(v, (list, tuple))]
        assert len(statuses) == 1
        assert set(statuses[0]) == set(BLOCKING_STATUSES)
        assert AppointmentStatus.CANCELLED not in statuses[0]


class TestErrorWrapping:
    """Driver failures surface as PersistenceError."""

    @pytest.mark.asyncio
    async def test_lookup(self, broken_store):
        with pytest.raises(PersistenceError):
            await broken_store.get_professional_by_contact("5491100000000")

    @pytest.mark.asyncio
    async def test_create(self, broken_store):
        data = NewAppointment(
            professional_id=uuid.uuid4(),
            counterpart_id=uuid.uuid4(),
            start=START,
            end=END,
        )

        with pytest.raises(PersistenceError):
            await broken_store.create_appointment(data)
