"""
Availability Engine.

Computes the next open slots for a professional.

Two modes:
- simulate: evenly spaced slots, used when there is no real calendar
- real: working hours minus blocking appointments, blackout periods and
  busy time reported by the external calendar
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from booking_bot.config import settings
from booking_bot.core.errors import UpstreamUnavailable
from booking_bot.core.scheduling.calendar_client import CalendarProvider
from booking_bot.core.scheduling.store import AppointmentStore
from booking_bot.core.scheduling.timezones import local_to_utc, resolve_zone, utc_to_local
from booking_bot.core.scheduling.types import Professional, Slot

logger = logging.getLogger(__name__)

SIMULATED_LEAD = timedelta(minutes=30)
SIMULATED_SPACING = timedelta(minutes=60)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AvailabilityEngine:
    """Finds bookable slots for a professional."""

    def __init__(
        self,
        store: AppointmentStore,
        calendar: Optional[CalendarProvider] = None,
        mode: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize engine.

        Args:
            store: Appointment store
            calendar: External calendar for busy periods (optional)
            mode: "simulate" or "real" (defaults to settings)
            clock: Source of the current UTC time
        """
        self._store = store
        self._calendar = calendar
        self.mode = mode or settings.calendar_mode
        self._clock = clock

    async def find_slots(
        self,
        professional: Professional,
        count: int,
        duration: timedelta,
        horizon_days: Optional[int] = None,
        not_before: Optional[datetime] = None,
    ) -> list[Slot]:
        """Return up to `count` open slots, earliest first.

        Args:
            professional: Calendar owner
            count: Maximum number of slots
            duration: Length of each slot
            horizon_days: Days to search (defaults to settings)
            not_before: Earliest acceptable start (UTC)

        Returns:
            Ordered, non-overlapping slots. May be empty.
        """
        if count <= 0 or duration <= timedelta(0):
            return []

        horizon = horizon_days if horizon_days is not None else settings.availability_horizon_days
        now = self._clock()

        if self.mode == "simulate":
            return self._simulated(now, count, duration, not_before)

        return await self._real(professional, now, count, duration, horizon, not_before)

    def _simulated(
        self,
        now: datetime,
        count: int,
        duration: timedelta,
        not_before: Optional[datetime],
    ) -> list[Slot]:
        anchor = now + SIMULATED_LEAD
        if not_before is not None and not_before > anchor:
            anchor = not_before

        return [
            Slot(start=anchor + SIMULATED_SPACING * i, end=anchor + SIMULATED_SPACING * i + duration)
            for i in range(count)
        ]

    async def _real(
        self,
        professional: Professional,
        now: datetime,
        count: int,
        duration: timedelta,
        horizon_days: int,
        not_before: Optional[datetime],
    ) -> list[Slot]:
        zone = resolve_zone(professional.timezone)
        hours = professional.working_hours

        search_start = max(now, not_before) if not_before else now
        first_day = utc_to_local(search_start, zone).date()
        last_day = first_day + timedelta(days=horizon_days)
        window_end = search_start + timedelta(days=horizon_days + 1)

        busy = await self._load_busy(professional, search_start, window_end)

        result: list[Slot] = []
        day = first_day
        while day < last_day and len(result) < count:
            if hours.is_working_day(day.weekday()):
                for candidate in self._day_candidates(day, hours, duration, zone):
                    if candidate.start < search_start:
                        continue
                    if any(candidate.overlaps(s, e) for s, e in busy):
                        continue
                    result.append(candidate)
                    if len(result) >= count:
                        break
            day += timedelta(days=1)

        logger.debug(
            f"Found {len(result)} slots for professional {professional.id} "
            f"between {first_day} and {last_day}"
        )
        return result

    def _day_candidates(self, day: date, hours, duration: timedelta, zone) -> list[Slot]:
        """Duration-aligned candidates inside the day's working window."""
        opening = datetime.combine(day, hours.start)
        closing = datetime.combine(day, hours.end)

        candidates = []
        local_start = opening
        while local_start + duration <= closing:
            start_utc = local_to_utc(local_start, zone)
            end_utc = local_to_utc(local_start + duration, zone)
            if start_utc is not None and end_utc is not None:
                # Wall-clock spans crossing a DST change keep the requested length
                candidates.append(Slot(start=start_utc, end=start_utc + duration))
            local_start += duration
        return candidates

    async def _load_busy(
        self,
        professional: Professional,
        start: datetime,
        end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """Collect every interval that blocks booking within [start, end)."""
        busy: list[tuple[datetime, datetime]] = []

        appointments = await self._store.list_blocking_appointments(professional.id, start, end)
        busy.extend((a.start, a.end) for a in appointments)

        blackouts = await self._store.list_blackouts(professional.id, start, end)
        busy.extend((b.start, b.end) for b in blackouts)

        if self._calendar is not None and professional.calendar_id:
            try:
                external = await self._calendar.get_busy(professional.calendar_id, start, end)
                busy.extend((s.start, s.end) for s in external)
            except UpstreamUnavailable as e:
                logger.warning(
                    f"External calendar unavailable for {professional.id}, "
                    f"using local bookings only: {e}"
                )

        return busy
