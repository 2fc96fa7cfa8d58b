"""IANA timezone helpers.

Local wall-clock values are always interpreted in the professional's zone,
never in the server's.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking_bot.config import settings

logger = logging.getLogger(__name__)


def resolve_zone(tz_id: Optional[str]) -> ZoneInfo:
    """Return the zone for tz_id, falling back to the configured default."""
    if tz_id:
        try:
            return ZoneInfo(tz_id)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{tz_id}', using {settings.default_timezone}")
    return ZoneInfo(settings.default_timezone)


def local_to_utc(local: datetime, zone: ZoneInfo) -> Optional[datetime]:
    """Convert a naive local datetime to UTC.

    Returns None for wall-clock times skipped by a DST transition.
    Ambiguous times resolve to their first occurrence.
    """
    aware = local.replace(tzinfo=zone, fold=0)
    utc = aware.astimezone(timezone.utc)
    if utc.astimezone(zone).replace(tzinfo=None) != local:
        return None
    return utc


def utc_to_local(value: datetime, zone: ZoneInfo) -> datetime:
    """Convert an aware UTC datetime to naive local wall-clock time."""
    return value.astimezone(zone).replace(tzinfo=None)
