"""
Text extractor.

Composes the optional LLM delegate with the heuristic rules:

1. Try the delegate with a deadline
2. On timeout or failure, use the heuristic result
3. On success, keep only enabled services and fill gaps from the heuristic
4. Recompute missing fields with the same policy either way
"""

import asyncio
import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Optional

from booking_bot.config import settings
from booking_bot.core.scheduling.timezones import resolve_zone, utc_to_local
from .delegate import ClaudeExtractionDelegate, ExtractionContext, ExtractionDelegate
from .heuristic import HeuristicExtractor, match_service, resolve_missing
from .types import ExtractionResult

logger = logging.getLogger(__name__)


class TextExtractor:
    """Utterance to ExtractionResult. Never raises."""

    def __init__(
        self,
        heuristic: Optional[HeuristicExtractor] = None,
        delegate: Optional[ExtractionDelegate] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize extractor.

        Args:
            heuristic: Rule-based extractor (default instance if omitted)
            delegate: Preferred extractor tried first (optional)
            timeout: Seconds to wait for the delegate (defaults to settings)
        """
        self._heuristic = heuristic or HeuristicExtractor()
        self._delegate = delegate
        self._timeout = timeout if timeout is not None else settings.extraction_timeout

    async def extract(
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
            tz_id: Professional's IANA timezone
            services: Names of the professional's enabled services
            now: Current time (timezone-aware)

        Returns:
            ExtractionResult with missing fields and clarifying prompt
        """
        heuristic = self._heuristic.extract(text, tz_id, services, now)

        if self._delegate is None or not (text or "").strip():
            return heuristic

        context = ExtractionContext(
            local_now=utc_to_local(now, resolve_zone(tz_id)),
            timezone=tz_id,
            services=list(services),
        )

        try:
            delegated = await asyncio.wait_for(
                self._delegate.extract(text, context),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Extraction delegate timed out after {self._timeout}s, using heuristics")
            return heuristic
        except Exception as e:
            logger.warning(f"Extraction delegate failed, using heuristics: {e}")
            return heuristic

        return self._combine(delegated, heuristic, services, context.local_now.date())

    def _combine(
        self,
        delegated: ExtractionResult,
        heuristic: ExtractionResult,
        services: list[str],
        today: date,
    ) -> ExtractionResult:
        """Normalize the delegate result and fill its gaps from the heuristic one.

        A date the heuristic resolved wins over the delegate's, so weekday
        names always mean the next strictly future occurrence.
        """
        service = delegated.service
        if service is not None and service not in services:
            service = match_service(service, services)
            if service is None:
                logger.debug(f"Delegate service '{delegated.service}' is not enabled, dropping")

        day = delegated.day
        if heuristic.day is not None:
            day = heuristic.day
        elif day is not None and day < today:
            logger.debug(f"Delegate date {day} is in the past, dropping")
            day = None

        normalized = replace(delegated, service=service, day=day)
        combined = heuristic.merge(normalized)
        return resolve_missing(combined, services)


def build_text_extractor(mode: Optional[str] = None) -> TextExtractor:
    """Create the configured text extractor."""
    mode = mode or settings.extraction_mode
    if mode == "llm":
        if settings.anthropic_api_key:
            return TextExtractor(delegate=ClaudeExtractionDelegate())
        logger.warning("extraction_mode=llm but no Anthropic API key configured, using heuristics")
    return TextExtractor()
