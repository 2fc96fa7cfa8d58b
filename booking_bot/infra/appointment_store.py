"""
SQLAlchemy appointment store.

Implements AppointmentStore on PostgreSQL. Appointment creation runs in one
transaction that locks the professional row (SELECT ... FOR UPDATE), so
concurrent commits for the same professional are serialized and the
overlap check sees every earlier insert.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_bot.core.errors import ConflictError, PersistenceError
from booking_bot.core.scheduling.store import AppointmentStore
from booking_bot.core.scheduling.types import (
    BLOCKING_STATUSES,
    Appointment,
    BlackoutPeriod,
    CalendarEventLink,
    Counterpart,
    NewAppointment,
    Professional,
    ServiceOffering,
    WorkingHours,
)
from booking_bot.infra.database import get_session_factory
from booking_bot.models import database as orm

logger = logging.getLogger(__name__)


def _professional(row: orm.Professional) -> Professional:
    return Professional(
        id=row.id,
        name=row.name,
        timezone=row.timezone,
        working_hours=WorkingHours(
            start=row.work_start,
            end=row.work_end,
            days=frozenset(row.work_days or []),
        ),
        contact=row.contact,
        calendar_id=row.calendar_id,
    )


def _counterpart(row: orm.Counterpart) -> Counterpart:
    return Counterpart(
        id=row.id,
        professional_id=row.professional_id,
        contact=row.contact,
        name=row.name,
    )


def _service(row: orm.ServiceOffering) -> ServiceOffering:
    return ServiceOffering(
        id=row.id,
        professional_id=row.professional_id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        price=row.price,
        enabled=row.enabled,
    )


def _appointment(row: orm.Appointment) -> Appointment:
    return Appointment(
        id=row.id,
        professional_id=row.professional_id,
        counterpart_id=row.counterpart_id,
        start=row.start_at,
        end=row.end_at,
        status=row.status,
        modality=row.modality,
        service_id=row.service_id,
        price=row.price,
        notes=row.notes,
    )


def _blackout(row: orm.BlackoutPeriod) -> BlackoutPeriod:
    return BlackoutPeriod(
        id=row.id,
        professional_id=row.professional_id,
        start=row.start_at,
        end=row.end_at,
        reason=row.reason,
    )


def _blocking_query(professional_id: uuid.UUID, start: datetime, end: datetime):
    return (
        select(orm.Appointment)
        .where(
            orm.Appointment.professional_id == professional_id,
            orm.Appointment.status.in_(list(BLOCKING_STATUSES)),
            orm.Appointment.start_at < end,
            orm.Appointment.end_at > start,
        )
        .order_by(orm.Appointment.start_at)
    )


def _blackout_query(professional_id: uuid.UUID, start: datetime, end: datetime):
    return select(orm.BlackoutPeriod).where(
        orm.BlackoutPeriod.professional_id == professional_id,
        orm.BlackoutPeriod.start_at < end,
        orm.BlackoutPeriod.end_at > start,
    )


class SqlAppointmentStore(AppointmentStore):
    """AppointmentStore backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """Initialize store.

        Args:
            session_factory: Session factory (defaults to the shared engine's)
        """
        self._session_factory = session_factory or get_session_factory()

    async def get_professional(self, professional_id: uuid.UUID) -> Optional[Professional]:
        try:
            async with self._session_factory() as session:
                row = await session.get(orm.Professional, professional_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load professional {professional_id}: {e}") from e
        return _professional(row) if row else None

    async def get_professional_by_contact(self, contact: str) -> Optional[Professional]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(orm.Professional).where(orm.Professional.contact == contact)
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to resolve professional for {contact}: {e}") from e
        return _professional(row) if row else None

    async def get_or_create_counterpart(
        self,
        professional_id: uuid.UUID,
        contact: str,
        name: Optional[str] = None,
    ) -> Counterpart:
        query = select(orm.Counterpart).where(
            orm.Counterpart.professional_id == professional_id,
            orm.Counterpart.contact == contact,
        )
        try:
            async with self._session_factory() as session:
                row = (await session.execute(query)).scalar_one_or_none()
                if row is not None:
                    return _counterpart(row)

                row = orm.Counterpart(
                    professional_id=professional_id,
                    contact=contact,
                    name=(name or "").strip() or "Paciente",
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    # Registered concurrently by another handler
                    await session.rollback()
                    row = (await session.execute(query)).scalar_one()
                    return _counterpart(row)

                logger.info(f"Counterpart registered: {row.id} for professional {professional_id}")
                return _counterpart(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to register counterpart {contact}: {e}") from e

    async def list_enabled_services(self, professional_id: uuid.UUID) -> list[ServiceOffering]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(orm.ServiceOffering)
                    .where(
                        orm.ServiceOffering.professional_id == professional_id,
                        orm.ServiceOffering.enabled.is_(True),
                    )
                    .order_by(orm.ServiceOffering.name)
                )
                return [_service(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list services: {e}") from e

    async def list_blocking_appointments(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[Appointment]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(_blocking_query(professional_id, start, end))
                return [_appointment(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list appointments: {e}") from e

    async def list_blackouts(
        self,
        professional_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> list[BlackoutPeriod]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(_blackout_query(professional_id, start, end))
                return [_blackout(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list blackouts: {e}") from e

    async def create_appointment(self, data: NewAppointment) -> Appointment:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    locked = await session.execute(
                        select(orm.Professional.id)
                        .where(orm.Professional.id == data.professional_id)
                        .with_for_update()
                    )
                    if locked.scalar_one_or_none() is None:
                        raise PersistenceError(f"Unknown professional {data.professional_id}")

                    overlapping = await session.execute(
                        _blocking_query(data.professional_id, data.start, data.end).limit(1)
                    )
                    if overlapping.scalar_one_or_none() is not None:
                        raise ConflictError(f"Slot {data.start.isoformat()} already booked")

                    blackout = await session.execute(
                        _blackout_query(data.professional_id, data.start, data.end).limit(1)
                    )
                    if blackout.scalar_one_or_none() is not None:
                        raise ConflictError(f"Slot {data.start.isoformat()} falls in a blackout")

                    row = orm.Appointment(
                        professional_id=data.professional_id,
                        counterpart_id=data.counterpart_id,
                        service_id=data.service_id,
                        start_at=data.start,
                        end_at=data.end,
                        status=data.status,
                        modality=data.modality,
                        price=data.price,
                        notes=data.notes,
                    )
                    session.add(row)
                    await session.flush()
                    return _appointment(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create appointment: {e}") from e

    async def get_calendar_link(self, appointment_id: uuid.UUID) -> Optional[CalendarEventLink]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(orm.CalendarEventLink).where(
                        orm.CalendarEventLink.appointment_id == appointment_id
                    )
                )
                row = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load calendar link: {e}") from e

        if row is None:
            return None
        return CalendarEventLink(
            appointment_id=row.appointment_id,
            provider=row.provider,
            external_event_id=row.external_event_id,
            sync_error=row.sync_error,
        )

    async def save_calendar_link(self, link: CalendarEventLink) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(orm.CalendarEventLink).where(
                            orm.CalendarEventLink.appointment_id == link.appointment_id
                        )
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        row = orm.CalendarEventLink(appointment_id=link.appointment_id, provider=link.provider)
                        session.add(row)
                    row.provider = link.provider
                    row.external_event_id = link.external_event_id
                    row.sync_error = link.sync_error
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save calendar link: {e}") from e
