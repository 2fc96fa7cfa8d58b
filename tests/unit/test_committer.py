"""Tests for the booking committer."""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from booking_bot.core.errors import ConflictError, PersistenceError
from booking_bot.core.scheduling.calendar_client import CalendarClientError, CalendarProvider
from booking_bot.core.scheduling.committer import BookingCommitter
from booking_bot.core.scheduling.pending import InMemoryPendingSelectionStore
from booking_bot.core.scheduling.store import InMemoryAppointmentStore
from booking_bot.core.scheduling.types import (
    AppointmentStatus,
    BlackoutPeriod,
    Modality,
    NewAppointment,
    Slot,
)
from tests.conftest import MONDAY_9AM, make_service

KEY = "conversation-1"

SLOT = Slot(start=MONDAY_9AM + timedelta(hours=2), end=MONDAY_9AM + timedelta(hours=2, minutes=30))


class RecordingCalendar(CalendarProvider):
    """Calendar that records created events."""

    name = "fake"

    def __init__(self, error=None):
        self.error = error
        self.events = []

    async def get_busy(self, calendar_id, start, end):
        return []

    async def create_event(self, calendar_id, event_id, summary, start, end):
        self.events.append((calendar_id, event_id, summary, start, end))
        if self.error:
            raise self.error
        return event_id


class FailingStore(InMemoryAppointmentStore):
    """Store whose writes fail."""

    async def create_appointment(self, data):
        raise PersistenceError("connection lost")


class LinkLookupFailingStore(InMemoryAppointmentStore):
    """Store that books fine but cannot read calendar links."""

    async def get_calendar_link(self, appointment_id):
        raise PersistenceError("connection lost")


@pytest.fixture
def pending(clock):
    return InMemoryPendingSelectionStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def counterpart_id():
    return uuid.uuid4()


def make_committer(store, pending, clock, calendar=None, status="pending"):
    return BookingCommitter(store, pending, calendar=calendar, initial_status=status, clock=clock)


class TestCommit:
    """Validation and persistence."""

    @pytest.mark.asyncio
    async def test_success(self, store, pending, clock, professional, counterpart_id):
        service = make_service(professional, name="Control", price="20000")
        await pending.set(KEY, professional.id, [SLOT])
        committer = make_committer(store, pending, clock)

        result = await committer.commit(
            professional, counterpart_id, SLOT, KEY, service=service, modality=Modality.REMOTE
        )

        appointment = result.appointment
        assert appointment.start == SLOT.start
        assert appointment.end == SLOT.end
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.modality == Modality.REMOTE
        assert appointment.service_id == service.id
        assert appointment.price == Decimal("20000")
        assert appointment.id in store.appointments
        assert result.calendar_link is None
        assert await pending.try_get(KEY) is None

    @pytest.mark.asyncio
    async def test_confirmed_status(self, store, pending, clock, professional, counterpart_id):
        committer = make_committer(store, pending, clock, status="confirmed")

        result = await committer.commit(professional, counterpart_id, SLOT, KEY)

        assert result.appointment.status == AppointmentStatus.CONFIRMED
        assert result.appointment.service_id is None

    @pytest.mark.asyncio
    async def test_overlap_is_conflict(self, store, pending, clock, professional, counterpart_id):
        committer = make_committer(store, pending, clock)
        await committer.commit(professional, uuid.uuid4(), SLOT, "other")
        await pending.set(KEY, professional.id, [SLOT])

        shifted = Slot(start=SLOT.start + timedelta(minutes=15), end=SLOT.end + timedelta(minutes=15))
        with pytest.raises(ConflictError):
            await committer.commit(professional, counterpart_id, shifted, KEY)

        # Offer survives so it can be replaced by a fresh one
        assert await pending.try_get(KEY) is not None

    @pytest.mark.asyncio
    async def test_adjacent_slot_is_free(self, store, pending, clock, professional, counterpart_id):
        committer = make_committer(store, pending, clock)
        await committer.commit(professional, uuid.uuid4(), SLOT, "other")

        following = Slot(start=SLOT.end, end=SLOT.end + timedelta(minutes=30))
        result = await committer.commit(professional, counterpart_id, following, KEY)

        assert result.appointment.start == SLOT.end

    @pytest.mark.asyncio
    async def test_cancelled_appointment_frees_slot(self, store, pending, clock, professional, counterpart_id):
        committer = make_committer(store, pending, clock)
        first = await committer.commit(professional, uuid.uuid4(), SLOT, "other")
        first.appointment.status = AppointmentStatus.CANCELLED

        result = await committer.commit(professional, counterpart_id, SLOT, KEY)

        assert result.appointment.id != first.appointment.id

    @pytest.mark.asyncio
    async def test_blackout_is_conflict(self, store, pending, clock, professional, counterpart_id):
        store.add_blackout(BlackoutPeriod(
            id=uuid.uuid4(),
            professional_id=professional.id,
            start=SLOT.start - timedelta(hours=1),
            end=SLOT.start + timedelta(minutes=1),
        ))
        committer = make_committer(store, pending, clock)

        with pytest.raises(ConflictError):
            await committer.commit(professional, counterpart_id, SLOT, KEY)

        assert store.appointments == {}

    @pytest.mark.asyncio
    async def test_concurrent_commits_book_once(self, store, pending, clock, professional):
        committer = make_committer(store, pending, clock)

        results = await asyncio.gather(
            committer.commit(professional, uuid.uuid4(), SLOT, "a"),
            committer.commit(professional, uuid.uuid4(), SLOT, "b"),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(conflicts) == 1
        assert len(store.appointments) == 1

    @pytest.mark.asyncio
    async def test_store_rechecks_atomically(self, store, professional):
        data = NewAppointment(
            professional_id=professional.id,
            counterpart_id=uuid.uuid4(),
            start=SLOT.start,
            end=SLOT.end,
        )

        results = await asyncio.gather(
            store.create_appointment(data),
            store.create_appointment(data),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_offer(self, pending, clock, professional, counterpart_id):
        store = FailingStore()
        store.add_professional(professional)
        await pending.set(KEY, professional.id, [SLOT])
        committer = make_committer(store, pending, clock)

        with pytest.raises(PersistenceError):
            await committer.commit(professional, counterpart_id, SLOT, KEY)

        assert await pending.try_get(KEY) is not None


class TestCalendarSync:
    """Idempotent external event creation."""

    @pytest.fixture
    def synced_professional(self, professional):
        professional.calendar_id = "primary"
        return professional

    @pytest.mark.asyncio
    async def test_sync_creates_event(self, store, pending, clock, synced_professional, counterpart_id):
        calendar = RecordingCalendar()
        committer = make_committer(store, pending, clock, calendar=calendar)

        result = await committer.commit(
            synced_professional, counterpart_id, SLOT, KEY,
            sync_calendar=True, counterpart_name="Ana Pérez",
        )

        link = result.calendar_link
        assert link.external_event_id == result.appointment.id.hex
        assert link.provider == "fake"
        assert result.sync_error is None
        assert store.calendar_links[result.appointment.id] == link
        calendar_id, event_id, summary, start, end = calendar.events[0]
        assert calendar_id == "primary"
        assert summary == "Turno: Ana Pérez"
        assert (start, end) == (SLOT.start, SLOT.end)

    @pytest.mark.asyncio
    async def test_sync_is_idempotent(self, store, pending, clock, synced_professional, counterpart_id):
        calendar = RecordingCalendar()
        committer = make_committer(store, pending, clock, calendar=calendar)
        result = await committer.commit(synced_professional, counterpart_id, SLOT, KEY, sync_calendar=True)

        again = await committer.sync_appointment(synced_professional, result.appointment)

        assert again.external_event_id == result.calendar_link.external_event_id
        assert len(calendar.events) == 1

    @pytest.mark.asyncio
    async def test_sync_disabled(self, store, pending, clock, synced_professional, counterpart_id):
        calendar = RecordingCalendar()
        committer = make_committer(store, pending, clock, calendar=calendar)

        result = await committer.commit(synced_professional, counterpart_id, SLOT, KEY, sync_calendar=False)

        assert result.calendar_link is None
        assert calendar.events == []

    @pytest.mark.asyncio
    async def test_sync_failure_is_recorded_not_raised(
        self, store, pending, clock, synced_professional, counterpart_id
    ):
        calendar = RecordingCalendar(error=CalendarClientError("Create event failed with status 500"))
        committer = make_committer(store, pending, clock, calendar=calendar)

        result = await committer.commit(synced_professional, counterpart_id, SLOT, KEY, sync_calendar=True)

        assert result.appointment.id in store.appointments
        assert result.calendar_link.external_event_id is None
        assert "500" in result.sync_error

    @pytest.mark.asyncio
    async def test_link_lookup_failure_keeps_booking(
        self, pending, clock, synced_professional, counterpart_id
    ):
        store = LinkLookupFailingStore()
        store.add_professional(synced_professional)
        await pending.set(KEY, synced_professional.id, [SLOT])
        calendar = RecordingCalendar()
        committer = make_committer(store, pending, clock, calendar=calendar)

        result = await committer.commit(synced_professional, counterpart_id, SLOT, KEY, sync_calendar=True)

        assert result.appointment.id in store.appointments
        assert "connection lost" in result.sync_error
        assert calendar.events == []
        assert await pending.try_get(KEY) is None

    @pytest.mark.asyncio
    async def test_failed_sync_is_retried(self, store, pending, clock, synced_professional, counterpart_id):
        calendar = RecordingCalendar(error=CalendarClientError("timeout"))
        committer = make_committer(store, pending, clock, calendar=calendar)
        result = await committer.commit(synced_professional, counterpart_id, SLOT, KEY, sync_calendar=True)

        calendar.error = None
        link = await committer.sync_appointment(synced_professional, result.appointment)

        assert link.is_synced
        # Same client-supplied id both times
        assert calendar.events[0][1] == calendar.events[1][1] == result.appointment.id.hex
