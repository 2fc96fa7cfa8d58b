"""Conversation state machine."""

from enum import Enum
from typing import Set


class ConversationState(str, Enum):
    """States of one booking conversation."""

    AWAITING_DETAILS = "awaiting_details"
    OFFERING_SLOTS = "offering_slots"
    AWAITING_SELECTION = "awaiting_selection"
    COMMITTED = "committed"


# Valid state transitions
VALID_TRANSITIONS: dict[ConversationState, Set[ConversationState]] = {
    ConversationState.AWAITING_DETAILS: {
        ConversationState.AWAITING_DETAILS,
        ConversationState.OFFERING_SLOTS,
    },
    ConversationState.OFFERING_SLOTS: {
        ConversationState.AWAITING_SELECTION,
        ConversationState.AWAITING_DETAILS,  # No availability
    },
    ConversationState.AWAITING_SELECTION: {
        ConversationState.COMMITTED,
        ConversationState.OFFERING_SLOTS,  # Slot taken, offer again
        ConversationState.AWAITING_DETAILS,  # Expired offer or new request
    },
    ConversationState.COMMITTED: {
        ConversationState.AWAITING_DETAILS,
    },
}


class InvalidTransition(Exception):
    """Raised on a transition the state machine does not allow."""

    def __init__(self, from_state: ConversationState, to_state: ConversationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())
