"""iCalendar feed parser producing raw event components."""
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from icalendar import Calendar

from processor.exceptions import ParseFailure
from processor.models import (
    FloatingInstant,
    Instant,
    ParsedCalendar,
    RawEventComponent,
    UtcInstant,
    ZonedInstant,
)
from processor.timezone_resolver import load_zone

logger = logging.getLogger(__name__)


class IcsParser:
    """Parser for ICS calendar documents."""

    NAME_PROPERTIES = ('X-WR-CALNAME', 'NAME', 'SUMMARY')

    SUMMARY_NAME_PATTERNS = (
        re.compile(r'vs\s+(.+?)(?:\s|$)', re.IGNORECASE),
        re.compile(r'(.+?)\s+vs', re.IGNORECASE),
    )
    LOCATION_NAME_PATTERN = re.compile(r'(.+?)\s+(?:field|court|gym)', re.IGNORECASE)

    NAME_NOISE = (
        re.compile(r'calendar', re.IGNORECASE),
        re.compile(r'schedule', re.IGNORECASE),
    )

    def __init__(self, platform: str = 'SportsEngine'):
        """
        Initialize the parser.

        Args:
            platform: Platform display name used in the synthesized team name
        """
        self.platform = platform

    def parse(self, ics_text: str, feed_url: str) -> ParsedCalendar:
        """
        Parse ICS text into a calendar name and raw event components.

        VEVENTs that cannot be decoded are skipped and counted; the rest
        of the feed is still returned.

        Args:
            ics_text: Raw ICS document
            feed_url: Feed reference as supplied by the caller

        Returns:
            ParsedCalendar

        Raises:
            ParseFailure: If the document cannot be parsed at all
        """
        calendar = self._load_calendar(ics_text)
        vevents = calendar.walk('VEVENT')
        logger.info(f"Successfully parsed ICS data, found events: {len(vevents)}")

        events = []
        skipped = 0
        for index, vevent in enumerate(vevents):
            try:
                event = self._parse_event(vevent)
            except (ValueError, TypeError, AttributeError, KeyError) as e:
                logger.warning(f"Skipping unreadable VEVENT #{index}: {e}")
                skipped += 1
                continue
            if event is None:
                logger.warning(f"Skipping VEVENT #{index} without DTSTART")
                skipped += 1
                continue
            events.append(event)

        name = self.extract_calendar_name(calendar, vevents, feed_url)
        logger.info(f"Extracted calendar name: {name}")

        return ParsedCalendar(name=name, events=events, skipped=skipped)

    def _load_calendar(self, ics_text: str) -> Calendar:
        if not ics_text or not ics_text.strip():
            raise ParseFailure("Failed to parse calendar data: empty document")

        try:
            calendar = Calendar.from_ical(ics_text)
        except (ValueError, IndexError, KeyError) as e:
            raise ParseFailure(f"Failed to parse calendar data: {e}") from e

        if isinstance(calendar, list) or calendar.name != 'VCALENDAR':
            raise ParseFailure(
                "Failed to parse calendar data: expected a single VCALENDAR"
            )
        return calendar

    def _parse_event(self, vevent) -> Optional[RawEventComponent]:
        """
        Convert one VEVENT into a RawEventComponent.

        Returns:
            RawEventComponent or None if the event has no start
        """
        dtstart = vevent.get('DTSTART')
        if dtstart is None:
            return None

        dtend = vevent.get('DTEND')
        duration = vevent.get('DURATION')
        uid = vevent.get('UID')

        return RawEventComponent(
            summary=str(vevent.get('SUMMARY', '')).strip(),
            description=str(vevent.get('DESCRIPTION', '')),
            location=str(vevent.get('LOCATION', '')).strip(),
            start=to_instant(dtstart),
            end=to_instant(dtend) if dtend is not None else None,
            duration=duration.dt if duration is not None else None,
            all_day=_is_date_only(dtstart.dt),
            uid=str(uid) if uid is not None else None
        )

    def extract_calendar_name(self, calendar: Calendar, vevents: list, feed_url: str) -> str:
        """
        Derive a human-readable team name for the feed.

        Tries calendar-level name properties, then patterns on the first
        event's summary and location, then falls back to a name built from
        the URL's last path segment.
        """
        name = None
        for prop in self.NAME_PROPERTIES:
            value = calendar.get(prop)
            if value is not None and str(value).strip():
                name = str(value)
                break

        if not name and vevents:
            name = self._name_from_event(vevents[0])

        if name:
            name = self.clean_name(name)

        if not name:
            name = self.fallback_name(feed_url)

        return name

    def _name_from_event(self, vevent) -> Optional[str]:
        summary = str(vevent.get('SUMMARY', ''))
        location = str(vevent.get('LOCATION', ''))

        for pattern in self.SUMMARY_NAME_PATTERNS:
            match = pattern.search(summary)
            if match:
                return match.group(1).strip()

        match = self.LOCATION_NAME_PATTERN.search(location)
        if match:
            return match.group(1).strip()

        return None

    def clean_name(self, name: str) -> str:
        """Strip 'calendar'/'schedule' noise words from a name."""
        for pattern in self.NAME_NOISE:
            name = pattern.sub('', name, count=1)
        return name.strip()

    def fallback_name(self, feed_url: str) -> str:
        """Synthesize a team name from the feed URL's last path segment."""
        segment = feed_url.rstrip().split('/')[-1]
        if '.ics' in feed_url:
            segment = segment.split('.')[0]
        return f"{self.platform} Team {segment}"


def _is_date_only(value) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _utc_instant(value: datetime) -> UtcInstant:
    utc_value = value.astimezone(timezone.utc)
    return UtcInstant(
        utc_value.year, utc_value.month, utc_value.day,
        utc_value.hour, utc_value.minute, utc_value.second
    )


def to_instant(prop) -> Instant:
    """
    Classify a DTSTART/DTEND property as a UTC, zoned or floating instant.

    A TZID that is not a tz database name (a feed-defined VTIMEZONE or a
    Windows zone name) is resolved by icalendar itself; such values are
    normalized to UTC. A tz database TZID stays zoned, as does one that
    nothing defines; the latter is later read in the user's zone.

    Args:
        prop: icalendar date/date-time property

    Returns:
        UtcInstant, ZonedInstant or FloatingInstant
    """
    value = prop.dt
    if isinstance(value, timedelta):
        raise ValueError(f"Unexpected duration value: {value}")

    if _is_date_only(value):
        return FloatingInstant(value.year, value.month, value.day, 0, 0, 0)

    fields = (
        value.year, value.month, value.day,
        value.hour, value.minute, value.second
    )
    tzid = prop.params.get('TZID') if hasattr(prop, 'params') else None

    if tzid:
        zone_id = str(tzid)
        if load_zone(zone_id) is None and value.tzinfo is not None:
            return _utc_instant(value)
        return ZonedInstant(*fields, zone_id=zone_id)
    if value.tzinfo is not None:
        offset = value.utcoffset()
        if offset is not None and offset != timedelta(0):
            # Non-UTC zone without a TZID parameter; normalize to UTC
            return _utc_instant(value)
        return UtcInstant(*fields)
    return FloatingInstant(*fields)
