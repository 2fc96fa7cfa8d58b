"""
Booking Committer.

Turns a selected slot into an appointment:

1. Re-validate the slot against current bookings and blackouts
2. Persist the appointment (the store re-checks atomically)
3. Optionally mirror it to the external calendar, idempotently
4. Clear the conversation's pending offer

The offer shown to the user is only a hint; step 1 and the store's own
check are what prevent double booking.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from booking_bot.config import settings
from booking_bot.core.errors import ConflictError, PersistenceError, UpstreamUnavailable
from booking_bot.core.scheduling.calendar_client import CalendarProvider
from booking_bot.core.scheduling.pending import PendingSelectionStore
from booking_bot.core.scheduling.store import AppointmentStore
from booking_bot.core.scheduling.types import (
    Appointment,
    AppointmentStatus,
    CalendarEventLink,
    Modality,
    NewAppointment,
    Professional,
    ServiceOffering,
    Slot,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class CommitResult:
    """Outcome of a successful commit."""

    appointment: Appointment
    calendar_link: Optional[CalendarEventLink] = None

    @property
    def sync_error(self) -> Optional[str]:
        if self.calendar_link is None:
            return None
        return self.calendar_link.sync_error


class BookingCommitter:
    """Validates, persists and syncs chosen slots."""

    def __init__(
        self,
        store: AppointmentStore,
        pending_store: PendingSelectionStore,
        calendar: Optional[CalendarProvider] = None,
        initial_status: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize committer.

        Args:
            store: Appointment store
            pending_store: Offer cache cleared after a successful persist
            calendar: External calendar for event sync (optional)
            initial_status: "pending" or "confirmed" (defaults to settings)
            clock: Source of the current UTC time
        """
        self._store = store
        self._pending = pending_store
        self._calendar = calendar
        self.initial_status = AppointmentStatus(initial_status or settings.initial_appointment_status)
        self._clock = clock
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}

    def _lock_for(self, professional_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(professional_id)
        if lock is None:
            lock = self._locks.setdefault(professional_id, asyncio.Lock())
        return lock

    async def commit(
        self,
        professional: Professional,
        counterpart_id: uuid.UUID,
        slot: Slot,
        conversation_key: str,
        service: Optional[ServiceOffering] = None,
        modality: Modality = Modality.IN_PERSON,
        sync_calendar: Optional[bool] = None,
        counterpart_name: Optional[str] = None,
    ) -> CommitResult:
        """Book `slot` for the counterpart.

        Args:
            professional: Calendar owner
            counterpart_id: Requesting person
            slot: Chosen interval
            conversation_key: Key of the pending offer to clear
            service: Booked service (optional)
            modality: In person or remote
            sync_calendar: Mirror to the external calendar (defaults to settings)
            counterpart_name: Used in the external event summary

        Returns:
            CommitResult with the stored appointment and sync outcome

        Raises:
            ConflictError: slot is no longer free
            PersistenceError: store write failed
        """
        async with self._lock_for(professional.id):
            await self._revalidate(professional.id, slot)

            appointment = await self._store.create_appointment(
                NewAppointment(
                    professional_id=professional.id,
                    counterpart_id=counterpart_id,
                    start=slot.start,
                    end=slot.end,
                    status=self.initial_status,
                    modality=modality,
                    service_id=service.id if service else None,
                    price=service.price if service else None,
                    notes=f"Created via conversation {self._clock().isoformat()}",
                )
            )

        logger.info(
            f"Appointment {appointment.id} booked for professional {professional.id} "
            f"at {slot.start.isoformat()}"
        )

        await self._pending.clear(conversation_key)

        if sync_calendar is None:
            sync_calendar = settings.calendar_sync_enabled

        link = None
        if sync_calendar and self._calendar is not None and professional.calendar_id:
            summary = f"Turno: {counterpart_name}" if counterpart_name else "Turno"
            link = await self.sync_appointment(professional, appointment, summary)

        return CommitResult(appointment=appointment, calendar_link=link)

    async def _revalidate(self, professional_id: uuid.UUID, slot: Slot) -> None:
        """Raise ConflictError unless the slot is still free."""
        if await self._store.list_blocking_appointments(professional_id, slot.start, slot.end):
            raise ConflictError(f"Slot {slot.start.isoformat()} was taken")
        if await self._store.list_blackouts(professional_id, slot.start, slot.end):
            raise ConflictError(f"Slot {slot.start.isoformat()} falls in a blackout")

    async def sync_appointment(
        self,
        professional: Professional,
        appointment: Appointment,
        summary: str = "Turno",
    ) -> CalendarEventLink:
        """Create or reuse the external event for an appointment.

        Calling this repeatedly for the same appointment never creates a
        second event. Failures are recorded on the link, not raised.
        """
        if self._calendar is None or not professional.calendar_id:
            raise ValueError("Calendar sync requires a provider and a calendar id")

        link = CalendarEventLink(appointment_id=appointment.id, provider=self._calendar.name)
        try:
            existing = await self._store.get_calendar_link(appointment.id)
        except PersistenceError as e:
            logger.error(f"Failed to load calendar link for {appointment.id}: {e}")
            link.sync_error = str(e)
            return link
        if existing is not None and existing.is_synced:
            return existing

        try:
            link.external_event_id = await self._calendar.create_event(
                calendar_id=professional.calendar_id,
                event_id=appointment.id.hex,
                summary=summary,
                start=appointment.start,
                end=appointment.end,
            )
        except UpstreamUnavailable as e:
            logger.warning(f"Calendar sync failed for appointment {appointment.id}: {e}")
            link.sync_error = str(e)

        try:
            await self._store.save_calendar_link(link)
        except PersistenceError as e:
            logger.error(f"Failed to record calendar link for {appointment.id}: {e}")
            link.sync_error = link.sync_error or str(e)
        return link
