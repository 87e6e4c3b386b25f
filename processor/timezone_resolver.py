"""Conversion of feed instants into absolute UTC datetimes."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from processor.models import (
    FloatingInstant,
    Instant,
    RawEventComponent,
    UtcInstant,
    ZonedInstant,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'UTC'
DEFAULT_EVENT_DURATION = timedelta(hours=1)


def load_zone(zone_id: Optional[str]) -> Optional[ZoneInfo]:
    """Return the tz database zone for ``zone_id`` or None if unknown."""
    if not zone_id:
        return None
    try:
        return ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def to_utc_iso(value: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class TimezoneResolver:
    """Resolves UTC, zoned and floating instants to UTC datetimes."""

    def __init__(self, user_timezone: Optional[str] = None):
        """
        Initialize the resolver.

        Args:
            user_timezone: Owning user's preferred zone, used for floating
                times. Unset or unknown zones degrade to UTC.
        """
        zone = load_zone(user_timezone)
        if zone is None:
            if user_timezone and user_timezone != DEFAULT_TIMEZONE:
                logger.warning(
                    f"Unknown user timezone '{user_timezone}', using UTC"
                )
            zone = ZoneInfo(DEFAULT_TIMEZONE)
        self.user_zone = zone

    def resolve(self, instant: Instant) -> datetime:
        """
        Convert a single instant to an aware UTC datetime.

        Args:
            instant: UtcInstant, ZonedInstant or FloatingInstant

        Returns:
            Timezone-aware datetime in UTC
        """
        wall_clock = instant.to_naive()

        if isinstance(instant, UtcInstant):
            return wall_clock.replace(tzinfo=timezone.utc)

        if isinstance(instant, ZonedInstant):
            zone = load_zone(instant.zone_id)
            if zone is None:
                logger.warning(
                    f"Unknown event timezone '{instant.zone_id}', "
                    f"interpreting in user timezone {self.user_zone.key}"
                )
                zone = self.user_zone
            return wall_clock.replace(tzinfo=zone).astimezone(timezone.utc)

        if isinstance(instant, FloatingInstant):
            return wall_clock.replace(tzinfo=self.user_zone).astimezone(timezone.utc)

        raise TypeError(f"Unsupported instant type: {type(instant).__name__}")

    def resolve_event(self, event: RawEventComponent) -> Tuple[datetime, datetime]:
        """
        Resolve an event's start and end to UTC.

        A missing end is derived from DURATION, else one day for all-day
        events, else a one hour default.

        Returns:
            Tuple of (start_time, end_time) as aware UTC datetimes
        """
        start = self.resolve(event.start)

        if event.end is not None:
            end = self.resolve(event.end)
        elif event.duration is not None:
            end = start + event.duration
        elif event.all_day:
            end = start + timedelta(days=1)
        else:
            end = start + DEFAULT_EVENT_DURATION

        return start, end
