"""
Rule-based extraction for Spanish (es-AR) and English booking messages.

Recognizes:
- Relative dates: hoy, mañana, pasado mañana, weekday names
- Explicit dates: 15/10, 15-10-2026
- Times: 14:30, 2pm, 10hs, 9.15, "a las 10"
- Durations: "45 minutos", "1 hora", "por 2 hs", "media hora"
- Modality keywords (virtual / presencial)
- Service names from the professional's enabled services
"""

import logging
import re
import unicodedata
from datetime import date, datetime, time, timedelta
from typing import Optional

from booking_bot.core.scheduling.timezones import resolve_zone, utc_to_local
from booking_bot.core.scheduling.types import Modality
from .types import MISSING_DATETIME, MISSING_SERVICE, ExtractionResult

logger = logging.getLogger(__name__)


DATETIME_PROMPT = '¿Qué día y a qué hora querés el turno? Ej: "martes 10:30" o "15/10 14:00".'
SERVICE_PROMPT = "¿Para qué servicio? Opciones: {options}."

WEEKDAYS = {
    "lunes": 0,
    "martes": 1,
    "miercoles": 2,
    "jueves": 3,
    "viernes": 4,
    "sabado": 5,
    "domingo": 6,
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

REMOTE_KEYWORDS = ("videollamada", "virtual", "online", "remoto", "remota", "remote", "video")
IN_PERSON_KEYWORDS = ("presencial", "consultorio", "in person", "in-person")

# Patterns run against accent-folded, lowercased text
_DATE_RE = re.compile(r"\b(\d{1,2})[/-](\d{1,2})(?:[/-](\d{4}|\d{2}))?\b")
_TIME_RE = re.compile(r"\b(\d{1,2})(?:[:.h](\d{2}))?\s*(am|pm|hs|h)?\b")
_BARE_HOUR_RE = re.compile(r"\b(?:a las|a la|at)\s+(\d{1,2})\b")
_WEEKDAY_RE = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\b")
_MINUTES_RE = re.compile(r"\b(\d{1,3})\s*(?:minutos|minuto|minutes|minute|mins|min)\b")
_HOURS_RE = re.compile(r"\b(\d{1,2})\s*(?:horas|hora|hours|hour)\b")
_SHORT_HOURS_RE = re.compile(r"\b(?:por|durante|for)\s+(\d{1,2})\s*(?:hs|h)\b")
_HALF_HOUR_RE = re.compile(r"\bmedia hora\b|\bhalf an hour\b")
_PART_OF_DAY_RE = re.compile(r"\b(?:a|por|de) la manana\b")


def fold(text: str) -> str:
    """Lowercase and strip accents ("Mañana" -> "manana")."""
    normalized = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in normalized if not unicodedata.combining(c))


def match_service(text: str, services: list[str]) -> Optional[str]:
    """
    Find the enabled service named in text.

    A service matches when its name appears in the text or the whole text
    appears in its name. When several match, the most specific one wins
    only if it contains all the others ("consulta general" over
    "consulta"); otherwise the match is ambiguous.

    Returns:
        Service name as configured, or None
    """
    folded = fold(text).strip()
    if len(folded) < 3:
        return None

    matches = [
        name for name in services
        if fold(name) in folded or folded in fold(name)
    ]
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0]

    longest = max(matches, key=len)
    if all(fold(m) in fold(longest) for m in matches):
        return longest

    logger.debug(f"Ambiguous service match for '{text}': {matches}")
    return None


def resolve_missing(result: ExtractionResult, services: list[str]) -> ExtractionResult:
    """
    Recompute missing fields and the clarifying prompt.

    Service is required only when more than one service is enabled.
    The date/time question is asked before the service question.
    """
    missing = []
    if result.local_start is None:
        missing.append(MISSING_DATETIME)
    if result.service is None and len(services) > 1:
        missing.append(MISSING_SERVICE)

    prompt = None
    if MISSING_DATETIME in missing:
        prompt = DATETIME_PROMPT
    elif MISSING_SERVICE in missing:
        prompt = SERVICE_PROMPT.format(options=", ".join(services))

    return result.with_missing(missing, prompt)


class HeuristicExtractor:
    """Deterministic keyword and pattern extractor."""

    def extract(
        self,
        text: str,
        tz_id: str,
        services: list[str],
        now: datetime,
    ) -> ExtractionResult:
        """
        Extract booking details from an utterance.

        Args:
            text: Raw message text
            tz_id: Professional's IANA timezone (relative dates use its "today")
            services: Names of the professional's enabled services
            now: Current time (timezone-aware)

        Returns:
            ExtractionResult with missing fields and prompt filled in
        """
        folded = fold(text or "")
        today = utc_to_local(now, resolve_zone(tz_id)).date()

        day, remainder = self._parse_date(folded, today)
        duration, remainder = self._parse_duration(remainder)
        time_of_day = self._parse_time(remainder)

        if len(services) == 1:
            service = services[0]
        else:
            service = match_service(text or "", services)

        result = ExtractionResult(
            service=service,
            day=day,
            time_of_day=time_of_day,
            duration_minutes=duration,
            modality=self._parse_modality(folded),
            source="heuristic",
        )
        result = resolve_missing(result, services)

        logger.debug(f"Heuristic extraction: {result.to_dict()}")
        return result

    def _parse_date(self, folded: str, today: date) -> tuple[Optional[date], str]:
        """Resolve the date and return the text with the date token removed."""
        match = _DATE_RE.search(folded)
        if match:
            remainder = folded[:match.start()] + " " + folded[match.end():]
            day, month, year = match.groups()
            if year is None:
                year_value = today.year
            elif len(year) == 2:
                year_value = 2000 + int(year)
            else:
                year_value = int(year)
            try:
                return date(year_value, int(month), int(day)), remainder
            except ValueError:
                logger.debug(f"Impossible date '{match.group(0)}'")
                return None, remainder

        # "a la mañana" is morning, not tomorrow
        keywords = _PART_OF_DAY_RE.sub(" ", folded)

        if re.search(r"\bpasado manana\b", keywords):
            return today + timedelta(days=2), folded
        if re.search(r"\b(?:manana|tomorrow)\b", keywords):
            return today + timedelta(days=1), folded
        if re.search(r"\b(?:hoy|today)\b", keywords):
            return today, folded

        weekday = _WEEKDAY_RE.search(keywords)
        if weekday:
            target = WEEKDAYS[weekday.group(1)]
            ahead = (target - today.weekday()) % 7 or 7
            return today + timedelta(days=ahead), folded

        return None, folded

    def _parse_duration(self, folded: str) -> tuple[Optional[int], str]:
        """Find an explicit duration and return the text without it."""
        for pattern, factor in ((_MINUTES_RE, 1), (_HOURS_RE, 60), (_SHORT_HOURS_RE, 60)):
            match = pattern.search(folded)
            if match:
                minutes = int(match.group(1)) * factor
                remainder = folded[:match.start()] + " " + folded[match.end():]
                return (minutes if minutes > 0 else None), remainder

        match = _HALF_HOUR_RE.search(folded)
        if match:
            return 30, folded[:match.start()] + " " + folded[match.end():]

        return None, folded

    def _parse_time(self, folded: str) -> Optional[time]:
        """First valid time of day; bare hours only after "a las" / "at"."""
        for match in _TIME_RE.finditer(folded):
            hour_raw, minute_raw, suffix = match.groups()
            if minute_raw is None and suffix is None:
                continue
            return self._build_time(int(hour_raw), int(minute_raw or 0), suffix)

        bare = _BARE_HOUR_RE.search(folded)
        if bare:
            return self._build_time(int(bare.group(1)), 0, None)

        return None

    def _build_time(self, hour: int, minute: int, suffix: Optional[str]) -> Optional[time]:
        if suffix == "pm" and hour < 12:
            hour += 12
        elif suffix == "am" and hour == 12:
            hour = 0

        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            logger.debug(f"Out of range time {hour}:{minute:02d}")
            return None
        return time(hour, minute)

    def _parse_modality(self, folded: str) -> Optional[Modality]:
        for keyword in REMOTE_KEYWORDS:
            if re.search(rf"\b{re.escape(keyword)}\b", folded):
                return Modality.REMOTE
        for keyword in IN_PERSON_KEYWORDS:
            if re.search(rf"\b{re.escape(keyword)}\b", folded):
                return Modality.IN_PERSON
        return None
