"""
Appointment store contract.

The booking engine only talks to persistence through AppointmentStore.
`InMemoryAppointmentStore` backs local development and the test-suite;
the SQLAlchemy implementation lives in booking_bot.infra.appointment_store.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from booking_bot.core.errors import ConflictError
from booking_bot.core.scheduling.types import (
    Appointment,
    BlackoutPeriod,
    CalendarEventLink,
    Counterpart,
    NewAppointment,
    Professional,
    ServiceOffering,
)

logger = logging.getLogger(__name__)


class AppointmentStore(ABC):
    """Persistence collaborator for professionals, services and appointments."""

    @abstractmethod
    async def get_professional(self, professional_id: uuid.UUID) -> Optional[Professional]:
        pass

    @abstractmethod
    async def get_professional_by_contact(self, contact: str) -> Optional[Professional]:
        """Resolve the professional that owns the inbound address."""
        pass

    @abstractmethod
    async def get_or_create_counterpart(
        self,
        professional_id: uuid.UUID,
        contact: str,
        name: Optional[str] = None,
    ) -> Counterpart:
        pass

    @abstractmethod
    async def list_enabled_services(self, professional_id: uuid.UUID) -> list[ServiceOffering]:
        pass

    @abstractmethod
    async def list_blocking_appointments(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[Appointment]:
        """Non-cancelled appointments overlapping [start, end), earliest first."""
        pass

    @abstractmethod
    async def list_blackouts(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[BlackoutPeriod]:
        """Blackout periods overlapping [start, end)."""
        pass

    @abstractmethod
    async def create_appointment(self, data: NewAppointment) -> Appointment:
        """Atomically check for overlaps and insert.

        Raises:
            ConflictError: interval overlaps a blocking appointment or blackout
            PersistenceError: the write failed
        """
        pass

    @abstractmethod
    async def get_calendar_link(self, appointment_id: uuid.UUID) -> Optional[CalendarEventLink]:
        pass

    @abstractmethod
    async def save_calendar_link(self, link: CalendarEventLink) -> None:
        """Insert or update the link for link.appointment_id."""
        pass


class InMemoryAppointmentStore(AppointmentStore):
    """In-process store guarded by an asyncio lock."""

    def __init__(self):
        self.professionals: dict[uuid.UUID, Professional] = {}
        self.counterparts: dict[uuid.UUID, Counterpart] = {}
        self.services: dict[uuid.UUID, ServiceOffering] = {}
        self.appointments: dict[uuid.UUID, Appointment] = {}
        self.blackouts: dict[uuid.UUID, BlackoutPeriod] = {}
        self.calendar_links: dict[uuid.UUID, CalendarEventLink] = {}
        self._lock = asyncio.Lock()

    # === Seeding ===

    def add_professional(self, professional: Professional) -> Professional:
        self.professionals[professional.id] = professional
        return professional

    def add_service(self, service: ServiceOffering) -> ServiceOffering:
        self.services[service.id] = service
        return service

    def add_blackout(self, blackout: BlackoutPeriod) -> BlackoutPeriod:
        self.blackouts[blackout.id] = blackout
        return blackout

    def add_appointment(self, appointment: Appointment) -> Appointment:
        self.appointments[appointment.id] = appointment
        return appointment

    # === AppointmentStore ===

    async def get_professional(self, professional_id: uuid.UUID) -> Optional[Professional]:
        return self.professionals.get(professional_id)

    async def get_professional_by_contact(self, contact: str) -> Optional[Professional]:
        for professional in self.professionals.values():
            if professional.contact == contact:
                return professional
        return None

    async def get_or_create_counterpart(
        self,
        professional_id: uuid.UUID,
        contact: str,
        name: Optional[str] = None,
    ) -> Counterpart:
        async with self._lock:
            for counterpart in self.counterparts.values():
                if counterpart.professional_id == professional_id and counterpart.contact == contact:
                    return counterpart

            counterpart = Counterpart(
                id=uuid.uuid4(),
                professional_id=professional_id,
                contact=contact,
                name=(name or "").strip() or "Paciente",
            )
            self.counterparts[counterpart.id] = counterpart
            logger.debug(f"Counterpart registered: {counterpart.id}")
            return counterpart

    async def list_enabled_services(self, professional_id: uuid.UUID) -> list[ServiceOffering]:
        return [
            s for s in self.services.values()
            if s.professional_id == professional_id and s.enabled
        ]

    async def list_blocking_appointments(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[Appointment]:
        found = [
            a for a in self.appointments.values()
            if a.professional_id == professional_id and a.is_blocking and a.overlaps(start, end)
        ]
        return sorted(found, key=lambda a: a.start)

    async def list_blackouts(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[BlackoutPeriod]:
        return [
            b for b in self.blackouts.values()
            if b.professional_id == professional_id and b.start < end and start < b.end
        ]

    async def create_appointment(self, data: NewAppointment) -> Appointment:
        async with self._lock:
            if await self.list_blocking_appointments(data.professional_id, data.start, data.end):
                raise ConflictError(f"Slot {data.start.isoformat()} already booked")
            if await self.list_blackouts(data.professional_id, data.start, data.end):
                raise ConflictError(f"Slot {data.start.isoformat()} falls in a blackout")

            appointment = Appointment(
                id=uuid.uuid4(),
                professional_id=data.professional_id,
                counterpart_id=data.counterpart_id,
                start=data.start,
                end=data.end,
                status=data.status,
                modality=data.modality,
                service_id=data.service_id,
                price=data.price,
                notes=data.notes,
            )
            self.appointments[appointment.id] = appointment
            return appointment

    async def get_calendar_link(self, appointment_id: uuid.UUID) -> Optional[CalendarEventLink]:
        return self.calendar_links.get(appointment_id)

    async def save_calendar_link(self, link: CalendarEventLink) -> None:
        self.calendar_links[link.appointment_id] = link
