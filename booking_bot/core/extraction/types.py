"""Extraction result types."""

from dataclasses import dataclass, replace
from datetime import date, datetime, time
from typing import Optional

from booking_bot.core.errors import ValidationError
from booking_bot.core.scheduling.types import Modality

# Missing-field tags
MISSING_SERVICE = "service"
MISSING_DATETIME = "date_time"


@dataclass(frozen=True)
class ExtractionResult:
    """Booking details found in one utterance (or accumulated over several).

    Date and time are kept apart so a later message can complete an earlier
    one ("el martes" then "a las 10"). Both are wall-clock values in the
    professional's timezone.
    """

    service: Optional[str] = None
    day: Optional[date] = None
    time_of_day: Optional[time] = None
    duration_minutes: Optional[int] = None
    modality: Optional[Modality] = None
    missing_fields: tuple[str, ...] = ()
    prompt: Optional[str] = None
    source: str = "heuristic"

    @property
    def local_start(self) -> Optional[datetime]:
        """Naive local start, when both date and time are known."""
        if self.day is None or self.time_of_day is None:
            return None
        return datetime.combine(self.day, self.time_of_day)

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields

    def has_any(self) -> bool:
        """Check if anything was extracted."""
        return any([
            self.service,
            self.day,
            self.time_of_day,
            self.duration_minutes,
            self.modality,
        ])

    def merge(self, other: "ExtractionResult") -> "ExtractionResult":
        """New result preferring non-None values from other.

        Missing fields and prompt are taken from other as-is; callers
        re-apply the missing-field policy after merging.
        """
        return ExtractionResult(
            service=other.service or self.service,
            day=other.day or self.day,
            time_of_day=other.time_of_day if other.time_of_day is not None else self.time_of_day,
            duration_minutes=other.duration_minutes or self.duration_minutes,
            modality=other.modality or self.modality,
            missing_fields=other.missing_fields,
            prompt=other.prompt,
            source=other.source,
        )

    def with_missing(self, missing_fields: list[str], prompt: Optional[str]) -> "ExtractionResult":
        return replace(self, missing_fields=tuple(missing_fields), prompt=prompt)

    def require_complete(self) -> None:
        """Raise ValidationError if any required field is missing."""
        if self.missing_fields:
            raise ValidationError(list(self.missing_fields), self.prompt)

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        result: dict = {"source": self.source}
        if self.service:
            result["service"] = self.service
        if self.day:
            result["day"] = self.day.isoformat()
        if self.time_of_day is not None:
            result["time_of_day"] = self.time_of_day.strftime("%H:%M")
        if self.duration_minutes:
            result["duration_minutes"] = self.duration_minutes
        if self.modality:
            result["modality"] = self.modality.value
        if self.missing_fields:
            result["missing_fields"] = list(self.missing_fields)
        if self.prompt:
            result["prompt"] = self.prompt
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractionResult":
        day = data.get("day")
        time_of_day = data.get("time_of_day")
        modality = data.get("modality")
        return cls(
            service=data.get("service"),
            day=date.fromisoformat(day) if day else None,
            time_of_day=time.fromisoformat(time_of_day) if time_of_day else None,
            duration_minutes=data.get("duration_minutes"),
            modality=Modality(modality) if modality else None,
            missing_fields=tuple(data.get("missing_fields", ())),
            prompt=data.get("prompt"),
            source=data.get("source", "heuristic"),
        )
