"""
Database Models

SQLAlchemy ORM models for the booking engine. All timestamps are stored
timezone-aware in UTC.
"""

import uuid
from datetime import datetime, time
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Time,
    UniqueConstraint, Enum as SQLEnum, text
)
from sqlalchemy.dialects.postgresql import UUID, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from booking_bot.core.scheduling.types import AppointmentStatus, Modality


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Professional(Base, TimestampMixin):
    """
    Professional model (calendar owner).

    The bot answers on `contact`; inbound messages addressed to it are
    routed to this professional.
    """

    __tablename__ = "professionals"
    __table_args__ = (
        Index("idx_professional_contact", "contact", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64),
        default="America/Argentina/Buenos_Aires"
    )
    contact: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    work_start: Mapped[time] = mapped_column(Time, default=time(9, 0))
    work_end: Mapped[time] = mapped_column(Time, default=time(18, 0))
    work_days: Mapped[list] = mapped_column(
        JSON,
        default=lambda: [0, 1, 2, 3, 4],
        doc="Working weekdays, Monday=0"
    )

    # Relationships
    services: Mapped[List["ServiceOffering"]] = relationship(
        "ServiceOffering",
        back_populates="professional"
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        "Appointment",
        back_populates="professional"
    )

    def __repr__(self) -> str:
        return f"<Professional(id={self.id}, name='{self.name}', contact='{self.contact}')>"


class Counterpart(Base, TimestampMixin):
    """
    Counterpart model (the person booking).

    Registered automatically on the first message to a professional.
    """

    __tablename__ = "counterparts"
    __table_args__ = (
        UniqueConstraint("professional_id", "contact", name="uq_counterpart_contact"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="CASCADE"),
        nullable=False
    )
    contact: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(200), default="Paciente")

    def __repr__(self) -> str:
        return f"<Counterpart(id={self.id}, contact='{self.contact}')>"


class ServiceOffering(Base, TimestampMixin):
    """Service offered by a professional."""

    __tablename__ = "service_offerings"
    __table_args__ = (
        UniqueConstraint("professional_id", "name", name="uq_service_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    professional: Mapped["Professional"] = relationship("Professional", back_populates="services")

    def __repr__(self) -> str:
        return f"<ServiceOffering(id={self.id}, name='{self.name}')>"


class Appointment(Base, TimestampMixin):
    """
    Appointment model.

    Never deleted; cancelled appointments stop blocking the calendar.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointment_professional_start", "professional_id", "start_at"),
        Index("idx_appointment_counterpart", "counterpart_id"),
        Index("idx_appointment_status", "professional_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="CASCADE"),
        nullable=False
    )
    counterpart_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("counterparts.id", ondelete="CASCADE"),
        nullable=False
    )
    service_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("service_offerings.id", ondelete="SET NULL"),
        nullable=True
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(AppointmentStatus, name="appointment_status", values_callable=_enum_values),
        default=AppointmentStatus.PENDING
    )
    modality: Mapped[Modality] = mapped_column(
        SQLEnum(Modality, name="appointment_modality", values_callable=_enum_values),
        default=Modality.IN_PERSON
    )
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    professional: Mapped["Professional"] = relationship("Professional", back_populates="appointments")

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, counterpart_id={self.counterpart_id}, "
            f"professional_id={self.professional_id}, start={self.start_at}, "
            f"status={self.status.value})>"
        )


class BlackoutPeriod(Base, TimestampMixin):
    """Interval in which a professional takes no bookings."""

    __tablename__ = "blackout_periods"
    __table_args__ = (
        Index("idx_blackout_professional_start", "professional_id", "start_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    professional_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="CASCADE"),
        nullable=False
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class CalendarEventLink(Base, TimestampMixin):
    """External calendar event created for an appointment."""

    __tablename__ = "calendar_event_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    external_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
