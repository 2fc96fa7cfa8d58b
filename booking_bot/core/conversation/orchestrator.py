"""
Conversation Orchestrator.

Runs one turn of the booking conversation:

    AWAITING_DETAILS -> OFFERING_SLOTS -> AWAITING_SELECTION -> COMMITTED
           ^                                                       |
           +-------------------------------------------------------+

- AWAITING_DETAILS: extract details, merge them into the session draft and
  ask one clarifying question until the draft is complete
- OFFERING_SLOTS: compute availability and store the offer
- AWAITING_SELECTION: a number picks an offered slot; anything else is a
  new request that replaces the offer
- COMMITTED: confirmation sent, draft cleared

Every turn ends with exactly one reply, or an explicit no-op for messages
without text and addresses no professional answers on.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from booking_bot.config import settings
from booking_bot.core.errors import (
    ConflictError,
    ExpiredOfferError,
    PersistenceError,
    ValidationError,
)
from booking_bot.core.extraction.extractor import TextExtractor
from booking_bot.core.extraction.heuristic import fold, resolve_missing
from booking_bot.core.extraction.types import ExtractionResult
from booking_bot.core.scheduling.availability import AvailabilityEngine
from booking_bot.core.scheduling.committer import BookingCommitter
from booking_bot.core.scheduling.pending import PendingSelectionStore
from booking_bot.core.scheduling.store import AppointmentStore
from booking_bot.core.scheduling.timezones import local_to_utc, resolve_zone
from booking_bot.core.scheduling.types import (
    Counterpart,
    Modality,
    Professional,
    ServiceOffering,
    Slot,
)
from booking_bot.infra.notifications import Sender
from .inbound import InboundMessage, normalize_contact
from .response import ResponseGenerator
from .session import ConversationSession, ConversationSessionStore, conversation_key
from .state import ConversationState

logger = logging.getLogger(__name__)

# "2", "2)", "opción 2", "la 2", "#2"
_SELECTION_RE = re.compile(r"^\s*(?:(?:la|el)\s+)?(?:(?:opcion|numero|nro\.?)\s*)?#?(\d{1,2})\s*[.)]?\s*$")


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_selection(text: str) -> Optional[int]:
    """Return the option number if the whole message is a selection."""
    match = _SELECTION_RE.match(fold(text))
    if match:
        return int(match.group(1))
    return None


@dataclass
class TurnResult:
    """Outcome of one handled message.

    `reply` is None for no-op turns. `error` names the recovered failure,
    if any: non_text, unknown_professional, expired_offer, conflict,
    persistence, send_failed.
    """

    reply: Optional[str]
    state: Optional[ConversationState]
    appointment_id: Optional[uuid.UUID] = None
    error: Optional[str] = None
    delivered: bool = False

    @property
    def is_noop(self) -> bool:
        return self.reply is None


class ConversationOrchestrator:
    """Turn-by-turn booking conversation, shared by every channel."""

    def __init__(
        self,
        store: AppointmentStore,
        extractor: TextExtractor,
        availability: AvailabilityEngine,
        pending_store: PendingSelectionStore,
        committer: BookingCommitter,
        sessions: ConversationSessionStore,
        sender: Sender,
        responses: Optional[ResponseGenerator] = None,
        slot_count: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize orchestrator.

        Args:
            store: Appointment store
            extractor: Utterance extractor
            availability: Slot finder
            pending_store: Offer cache
            committer: Slot to appointment
            sessions: Conversation state between turns
            sender: Outbound channel for replies
            responses: Reply templates
            slot_count: Slots per offer (defaults to settings)
            clock: Source of the current UTC time
        """
        self._store = store
        self._extractor = extractor
        self._availability = availability
        self._pending = pending_store
        self._committer = committer
        self._sessions = sessions
        self._sender = sender
        self._responses = responses or ResponseGenerator()
        self._slot_count = slot_count or settings.offer_slot_count
        self._clock = clock

    async def handle(self, message: InboundMessage) -> TurnResult:
        """
        Handle one inbound message and send the reply.

        Args:
            message: Normalized inbound message

        Returns:
            TurnResult with the reply sent (or None for a no-op)
        """
        if not message.has_text:
            logger.info(f"Ignoring non-text message from {message.from_id}")
            return TurnResult(reply=None, state=None, error="non_text")

        try:
            professional = await self._store.get_professional_by_contact(
                normalize_contact(message.to_id)
            )
        except PersistenceError as e:
            logger.error(f"Professional lookup failed for {message.to_id}: {e}")
            result = TurnResult(reply=self._responses.failure(), state=None, error="persistence")
            return await self._deliver(message.from_id, result)

        if professional is None:
            logger.warning(f"No professional answers on {message.to_id}, ignoring message")
            return TurnResult(reply=None, state=None, error="unknown_professional")

        contact = normalize_contact(message.from_id)
        key = conversation_key(str(professional.id), contact)
        session = await self._sessions.get(key)

        try:
            counterpart = await self._store.get_or_create_counterpart(
                professional.id, contact, name=message.contact_name
            )
            if session is None:
                session = ConversationSession(
                    key=key,
                    professional_id=str(professional.id),
                    counterpart_id=str(counterpart.id),
                )
            result = await self._dispatch(session, professional, counterpart, message.text)
        except PersistenceError as e:
            logger.error(f"Store failure in conversation {key}: {e}", exc_info=True)
            if session is not None and session.state == ConversationState.OFFERING_SLOTS:
                session.transition(ConversationState.AWAITING_DETAILS)
            result = TurnResult(
                reply=self._responses.failure(),
                state=session.state if session else ConversationState.AWAITING_DETAILS,
                error="persistence",
            )

        if session is not None:
            await self._sessions.save(session)

        return await self._deliver(message.from_id, result)

    async def _dispatch(
        self,
        session: ConversationSession,
        professional: Professional,
        counterpart: Counterpart,
        text: str,
    ) -> TurnResult:
        services = await self._store.list_enabled_services(professional.id)

        if session.state == ConversationState.AWAITING_SELECTION:
            number = parse_selection(text)
            if number is not None:
                return await self._handle_selection(session, professional, counterpart, services, number)

            # A new request replaces the stale offer
            await self._pending.clear(session.key)
            session.transition(ConversationState.AWAITING_DETAILS)

        return await self._handle_details(session, professional, services, text)

    async def _handle_details(
        self,
        session: ConversationSession,
        professional: Professional,
        services: list[ServiceOffering],
        text: str,
    ) -> TurnResult:
        names = [s.name for s in services]
        extracted = await self._extractor.extract(text, professional.timezone, names, self._clock())
        draft = resolve_missing(session.draft.merge(extracted), names)
        session.draft = draft

        try:
            draft.require_complete()
        except ValidationError as e:
            logger.debug(f"Conversation {session.key} missing {e.missing_fields}")
            session.transition(ConversationState.AWAITING_DETAILS)
            return TurnResult(
                reply=self._responses.clarify(e.prompt),
                state=session.state,
            )

        session.transition(ConversationState.OFFERING_SLOTS)
        slots = await self._find_slots(professional, services, draft)
        stored = await self._store_offer(session, professional, slots)
        return self._offer_reply(session, professional, slots, stored)

    async def _handle_selection(
        self,
        session: ConversationSession,
        professional: Professional,
        counterpart: Counterpart,
        services: list[ServiceOffering],
        number: int,
    ) -> TurnResult:
        try:
            slot = await self._resolve_selection(session.key, professional, number)
        except ExpiredOfferError as e:
            logger.info(f"Conversation {session.key}: {e}")
            session.transition(ConversationState.AWAITING_DETAILS)
            session.reset_draft()
            return TurnResult(
                reply=self._responses.expired(),
                state=session.state,
                error="expired_offer",
            )

        draft = session.draft
        service = self._service_for(services, draft.service)
        modality = draft.modality or Modality.IN_PERSON

        try:
            commit = await self._committer.commit(
                professional=professional,
                counterpart_id=counterpart.id,
                slot=slot,
                conversation_key=session.key,
                service=service,
                modality=modality,
                counterpart_name=counterpart.name,
            )
        except ConflictError as e:
            logger.info(f"Conversation {session.key}: {e}, offering again")
            session.transition(ConversationState.OFFERING_SLOTS)
            slots = await self._find_slots(professional, services, draft)
            stored = await self._store_offer(session, professional, slots)
            zone = resolve_zone(professional.timezone)
            result = self._offer_reply(session, professional, slots, stored)
            result.reply = self._responses.slot_taken(slots, zone)
            result.error = "conflict"
            return result
        except PersistenceError as e:
            # Offer and state are kept so the same number can be sent again
            logger.error(f"Failed to persist booking for {session.key}: {e}")
            return TurnResult(
                reply=self._responses.failure(),
                state=session.state,
                error="persistence",
            )

        session.transition(ConversationState.COMMITTED)
        reply = self._responses.confirmation(
            first_name=counterpart.first_name,
            slot=slot,
            zone=resolve_zone(professional.timezone),
            modality=modality,
            service_name=service.name if service else None,
            status=commit.appointment.status,
        )
        session.transition(ConversationState.AWAITING_DETAILS)
        session.reset_draft()

        return TurnResult(
            reply=reply,
            state=ConversationState.COMMITTED,
            appointment_id=commit.appointment.id,
        )

    async def _resolve_selection(
        self,
        key: str,
        professional: Professional,
        number: int,
    ) -> Slot:
        """
        Map an option number to the offered slot.

        Raises:
            ExpiredOfferError: no valid offer, or number out of range
        """
        offer = await self._pending.try_get(key)
        if offer is None or offer.professional_id != professional.id:
            raise ExpiredOfferError(f"No valid offer for {key}")

        slot = offer.pick(number)
        if slot is None:
            await self._pending.clear(key)
            raise ExpiredOfferError(f"Option {number} is not in the offer for {key}")
        return slot

    async def _find_slots(
        self,
        professional: Professional,
        services: list[ServiceOffering],
        draft: ExtractionResult,
    ) -> list[Slot]:
        service = self._service_for(services, draft.service)
        minutes = (
            draft.duration_minutes
            or (service.duration_minutes if service else None)
            or settings.default_duration_minutes
        )

        not_before = None
        if draft.local_start is not None:
            not_before = local_to_utc(draft.local_start, resolve_zone(professional.timezone))

        return await self._availability.find_slots(
            professional,
            count=self._slot_count,
            duration=timedelta(minutes=minutes),
            not_before=not_before,
        )

    async def _store_offer(
        self,
        session: ConversationSession,
        professional: Professional,
        slots: list[Slot],
    ) -> bool:
        if not slots:
            await self._pending.clear(session.key)
            return False
        await self._pending.set(session.key, professional.id, slots)
        return True

    def _offer_reply(
        self,
        session: ConversationSession,
        professional: Professional,
        slots: list[Slot],
        stored: bool,
    ) -> TurnResult:
        if not stored:
            logger.info(f"No availability for professional {professional.id}")
            session.transition(ConversationState.AWAITING_DETAILS)
            return TurnResult(reply=self._responses.no_availability(), state=session.state)

        session.transition(ConversationState.AWAITING_SELECTION)
        return TurnResult(
            reply=self._responses.offer(slots, resolve_zone(professional.timezone)),
            state=session.state,
        )

    def _service_for(
        self,
        services: list[ServiceOffering],
        name: Optional[str],
    ) -> Optional[ServiceOffering]:
        if name is None:
            return services[0] if len(services) == 1 else None
        for service in services:
            if service.name == name:
                return service
        return None

    async def _deliver(self, to: str, result: TurnResult) -> TurnResult:
        """Send the reply; delivery failures are logged and reported."""
        if result.reply is None:
            return result
        try:
            result.delivered = await self._sender.send(to, result.reply)
        except Exception as e:
            logger.error(f"Sender raised while replying to {to}: {e}", exc_info=True)
            result.delivered = False

        if not result.delivered:
            logger.error(f"Reply to {to} was not delivered")
            if result.error is None:
                result.error = "send_failed"
        return result
