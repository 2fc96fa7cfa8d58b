"""
Scheduling Module

Availability, pending offers and booking commits for the booking engine.

Usage:
    from booking_bot.core.scheduling import (
        AvailabilityEngine,
        BookingCommitter,
        InMemoryAppointmentStore,
        build_pending_store,
    )

    store = InMemoryAppointmentStore()
    pending = build_pending_store()
    engine = AvailabilityEngine(store)
    committer = BookingCommitter(store, pending)

    slots = await engine.find_slots(professional, count=3, duration=timedelta(minutes=30))
    await pending.set(conversation_key, professional.id, slots)
    result = await committer.commit(professional, counterpart.id, slots[0], conversation_key)
"""

# Types
from booking_bot.core.scheduling.types import (
    Appointment,
    AppointmentStatus,
    BlackoutPeriod,
    CalendarEventLink,
    Counterpart,
    Modality,
    NewAppointment,
    Professional,
    ServiceOffering,
    Slot,
    WorkingHours,
)

# Store
from booking_bot.core.scheduling.store import AppointmentStore, InMemoryAppointmentStore

# Calendar Client
from booking_bot.core.scheduling.calendar_client import (
    CalendarClientError,
    CalendarProvider,
    GoogleCalendarClient,
    get_calendar_client,
)

# Availability
from booking_bot.core.scheduling.availability import AvailabilityEngine

# Pending offers
from booking_bot.core.scheduling.pending import (
    InMemoryPendingSelectionStore,
    PendingOffer,
    PendingSelectionStore,
    RedisPendingSelectionStore,
    build_pending_store,
)

# Committer
from booking_bot.core.scheduling.committer import BookingCommitter, CommitResult

__all__ = [
    # Types
    "Appointment",
    "AppointmentStatus",
    "BlackoutPeriod",
    "CalendarEventLink",
    "Counterpart",
    "Modality",
    "NewAppointment",
    "Professional",
    "ServiceOffering",
    "Slot",
    "WorkingHours",
    # Store
    "AppointmentStore",
    "InMemoryAppointmentStore",
    # Calendar Client
    "CalendarClientError",
    "CalendarProvider",
    "GoogleCalendarClient",
    "get_calendar_client",
    # Availability
    "AvailabilityEngine",
    # Pending offers
    "InMemoryPendingSelectionStore",
    "PendingOffer",
    "PendingSelectionStore",
    "RedisPendingSelectionStore",
    "build_pending_store",
    # Committer
    "BookingCommitter",
    "CommitResult",
]
