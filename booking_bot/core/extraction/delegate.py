"""
LLM-based extraction using Claude.

The delegate is optional: the TextExtractor tries it first and falls back
to the heuristic rules on any failure.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Optional

from booking_bot.core.errors import UpstreamUnavailable
from booking_bot.core.scheduling.types import Modality
from booking_bot.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from .types import ExtractionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionContext:
    """What the delegate needs besides the text."""

    local_now: datetime
    timezone: str
    services: list[str] = field(default_factory=list)


EXTRACTION_PROMPT = """Extract appointment booking details from this message (usually Spanish, Argentina).

## Context

- Today is {weekday} {today} (timezone {timezone}), local time {now_time}
- Available services: {services}

## What to Extract

- service: One of the available services, exactly as written above, or null
- date: Appointment date (ISO format YYYY-MM-DD). Resolve "hoy", "mañana",
  "pasado mañana" and weekday names relative to today; a weekday equal to
  today's means next week
- time: Appointment time (24-hour format HH:MM, e.g., "2pm" -> "14:00", "10hs" -> "10:00")
- duration_minutes: Only if the person states a length ("45 minutos" -> 45)
- modality: "remote" for virtual / videollamada / online, "in_person" for
  presencial / consultorio, otherwise null

## Message

"{message}"

## Response

Respond with ONLY valid JSON (use null for fields not mentioned):
{{
    "service": "<service or null>",
    "date": "<YYYY-MM-DD or null>",
    "time": "<HH:MM or null>",
    "duration_minutes": <integer or null>,
    "modality": "<remote|in_person or null>"
}}"""

_WEEKDAY_NAMES = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]


class ExtractionDelegate(ABC):
    """Pluggable extraction backend."""

    @abstractmethod
    async def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        """
        Extract booking details.

        Raises:
            UpstreamUnavailable: backend failed or returned garbage
        """
        pass


class ClaudeExtractionDelegate(ExtractionDelegate):
    """Extraction through Claude Haiku."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize delegate.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def extract(self, text: str, context: ExtractionContext) -> ExtractionResult:
        prompt = EXTRACTION_PROMPT.format(
            weekday=_WEEKDAY_NAMES[context.local_now.weekday()],
            today=context.local_now.date().isoformat(),
            timezone=context.timezone,
            now_time=context.local_now.strftime("%H:%M"),
            services=", ".join(context.services) or "(none)",
            message=text.strip(),
        )

        client = await self._get_client()
        try:
            # No retries; TextExtractor enforces the deadline
            response = await client.generate(
                prompt=prompt,
                max_tokens=200,
                temperature=0.0,
                max_retries=1,
            )
        except ClaudeClientError as e:
            raise UpstreamUnavailable(f"Extraction delegate failed: {e}") from e

        logger.debug(
            f"Delegate extraction took {response.latency_ms:.0f}ms "
            f"({response.input_tokens}+{response.output_tokens} tokens)"
        )
        return self._parse_response(response.content)

    def _parse_response(self, response: str) -> ExtractionResult:
        """Parse LLM JSON response."""
        # Clean markdown if present
        response = response.strip()
        if response.startswith("```"):
            lines = response.split("\n")
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            response = "\n".join(lines)
        response = response.strip()

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            raise UpstreamUnavailable(f"Unparseable delegate response: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable("Delegate response is not a JSON object")

        parsed_date = None
        if data.get("date"):
            try:
                parsed_date = date.fromisoformat(data["date"])
            except (TypeError, ValueError):
                logger.warning(f"Invalid date format: {data['date']}")

        parsed_time = None
        if data.get("time"):
            try:
                parsed_time = time.fromisoformat(data["time"])
            except (TypeError, ValueError):
                logger.warning(f"Invalid time format: {data['time']}")

        duration = data.get("duration_minutes")
        if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
            duration = None

        modality = None
        if data.get("modality"):
            try:
                modality = Modality(str(data["modality"]).lower())
            except ValueError:
                logger.warning(f"Invalid modality: {data['modality']}")

        service = data.get("service")
        if not isinstance(service, str) or not service.strip():
            service = None

        return ExtractionResult(
            service=service,
            day=parsed_date,
            time_of_day=parsed_time,
            duration_minutes=duration,
            modality=modality,
            source="llm",
        )
