"""Conversation layer: sessions, replies and the turn orchestrator."""

from .state import ConversationState, InvalidTransition, can_transition
from .session import ConversationSession, ConversationSessionStore, conversation_key
from .inbound import InboundMessage, InboundNormalizer, JsonInboundNormalizer, normalize_contact
from .response import ResponseGenerator, format_day_long, format_slot_short
from .orchestrator import ConversationOrchestrator, TurnResult, parse_selection

__all__ = [
    # State
    "ConversationState",
    "InvalidTransition",
    "can_transition",
    # Sessions
    "ConversationSession",
    "ConversationSessionStore",
    "conversation_key",
    # Inbound
    "InboundMessage",
    "InboundNormalizer",
    "JsonInboundNormalizer",
    "normalize_contact",
    # Replies
    "ResponseGenerator",
    "format_day_long",
    "format_slot_short",
    # Orchestrator
    "ConversationOrchestrator",
    "TurnResult",
    "parse_selection",
]
