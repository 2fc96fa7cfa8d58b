"""
Orchestrator wiring.

Builds the booking engine from settings and keeps one shared instance per
process, the same way the other singletons (Redis, Claude, calendar) are
managed.
"""

import logging
from typing import Optional

from booking_bot.config import settings
from booking_bot.core.extraction.extractor import build_text_extractor
from booking_bot.core.scheduling.availability import AvailabilityEngine
from booking_bot.core.scheduling.calendar_client import CalendarProvider, get_calendar_client
from booking_bot.core.scheduling.committer import BookingCommitter
from booking_bot.core.scheduling.pending import PendingSelectionStore, build_pending_store
from booking_bot.core.scheduling.store import AppointmentStore, InMemoryAppointmentStore
from booking_bot.infra.notifications import Sender, build_sender
from .orchestrator import ConversationOrchestrator
from .session import ConversationSessionStore

logger = logging.getLogger(__name__)


def build_appointment_store(backend: Optional[str] = None) -> AppointmentStore:
    """Create the configured appointment store."""
    backend = backend or settings.store_backend
    if backend == "memory":
        logger.warning("Using in-memory appointment store, bookings are lost on restart")
        return InMemoryAppointmentStore()

    # Imported here so the memory backend does not create a database engine
    from booking_bot.infra.appointment_store import SqlAppointmentStore

    return SqlAppointmentStore()


def build_calendar() -> Optional[CalendarProvider]:
    """External calendar, when real availability or event sync needs one."""
    if settings.calendar_mode != "real" and not settings.calendar_sync_enabled:
        return None
    if not settings.google_calendar_access_token:
        logger.warning("No Google Calendar token configured, external calendar disabled")
        return None
    return get_calendar_client()


class BookingService:
    """The orchestrator plus the resources the service lifespan manages."""

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        pending_store: PendingSelectionStore,
        sender: Sender,
        calendar: Optional[CalendarProvider] = None,
        sessions: Optional[ConversationSessionStore] = None,
    ):
        self.orchestrator = orchestrator
        self.pending_store = pending_store
        self.sessions = sessions
        self.sender = sender
        self.calendar = calendar

    async def close(self) -> None:
        await self.sender.close()
        close_calendar = getattr(self.calendar, "close", None)
        if close_calendar is not None:
            await close_calendar()


def build_booking_service() -> BookingService:
    """Wire every component from settings."""
    store = build_appointment_store()
    calendar = build_calendar()
    pending_store = build_pending_store()
    sender = build_sender()
    sessions = ConversationSessionStore()

    orchestrator = ConversationOrchestrator(
        store=store,
        extractor=build_text_extractor(),
        availability=AvailabilityEngine(store, calendar=calendar),
        pending_store=pending_store,
        committer=BookingCommitter(store, pending_store, calendar=calendar),
        sessions=sessions,
        sender=sender,
    )
    logger.info(
        f"Booking engine ready (store={settings.store_backend}, "
        f"calendar={settings.calendar_mode}, extraction={settings.extraction_mode})"
    )
    return BookingService(orchestrator, pending_store, sender, calendar, sessions)


# Singleton
_service: Optional[BookingService] = None


def get_booking_service() -> BookingService:
    """Get singleton BookingService."""
    global _service
    if _service is None:
        _service = build_booking_service()
    return _service


def get_orchestrator() -> ConversationOrchestrator:
    """FastAPI dependency returning the shared orchestrator."""
    return get_booking_service().orchestrator


async def close_booking_service() -> None:
    """Release the shared service's clients."""
    global _service
    if _service is not None:
        await _service.close()
        _service = None
