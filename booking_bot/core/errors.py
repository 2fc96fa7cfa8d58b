"""Booking engine error taxonomy.

Each error maps to one recovery path in the conversation orchestrator:

- ValidationError: ask one clarifying question
- ConflictError: recompute availability and offer again
- ExpiredOfferError: restart the extraction cycle
- UpstreamUnavailable: fall back to heuristics / local-only computation
- PersistenceError: generic failure reply, no automatic retry
"""

from typing import Optional


class BookingError(Exception):
    """Base class for booking engine errors."""
    pass


class ValidationError(BookingError):
    """Utterance lacks required fields."""

    def __init__(self, missing_fields: list[str], prompt: Optional[str] = None):
        self.missing_fields = list(missing_fields)
        self.prompt = prompt
        super().__init__(f"Missing fields: {', '.join(self.missing_fields)}")


class ConflictError(BookingError):
    """Slot is no longer free at commit time."""
    pass


class ExpiredOfferError(BookingError):
    """Selection arrived with no valid pending offer."""
    pass


class UpstreamUnavailable(BookingError):
    """Extraction delegate or calendar provider failed."""
    pass


class PersistenceError(BookingError):
    """Appointment store write failed."""
    pass
