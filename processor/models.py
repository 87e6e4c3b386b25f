"""Data models for calendar sync processing."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union


@dataclass(frozen=True)
class WallClock:
    """Calendar date and time-of-day fields as written in the feed."""
    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int

    def to_naive(self) -> datetime:
        return datetime(
            self.year, self.month, self.day,
            self.hour, self.minute, self.second
        )


@dataclass(frozen=True)
class UtcInstant(WallClock):
    """Time value carrying the literal UTC marker (``Z``)."""


@dataclass(frozen=True)
class ZonedInstant(WallClock):
    """Wall-clock time qualified by a ``TZID`` parameter."""
    zone_id: str


@dataclass(frozen=True)
class FloatingInstant(WallClock):
    """Zone-less time; meaningful only against the owning user's zone."""


Instant = Union[UtcInstant, ZonedInstant, FloatingInstant]


@dataclass
class RawCalendarDocument:
    """Unparsed feed payload with retrieval metadata."""
    url: str
    text: str
    status_code: int
    byte_length: int


@dataclass
class RawEventComponent:
    """Single VEVENT as read from the feed."""
    summary: str
    description: str
    location: str
    start: Instant
    end: Optional[Instant]
    duration: Optional[timedelta] = None
    all_day: bool = False
    uid: Optional[str] = None


@dataclass
class ParsedCalendar:
    """Parsed calendar document."""
    name: str
    events: List[RawEventComponent]
    skipped: int = 0


@dataclass
class SyncContext:
    """Invocation values threaded through every pipeline stage."""
    team_id: str
    profile_id: Optional[str]
    platform: str
    platform_color: str
    feed_url: str
    sport: str = 'Unknown'
    user_timezone: str = 'UTC'


@dataclass
class Classification:
    """Result of classifying an event summary."""
    kind: str
    opponent: Optional[str]
    title: str
    description: str
    rule: Optional[str] = None


@dataclass
class CanonicalEvent:
    """Normalized event row, always in absolute UTC time."""
    event_id: str
    title: str
    description: str
    start_time: str
    end_time: str
    location: str
    sport: str
    color: str
    platform: str
    platform_color: str
    profile_id: str
    platform_team_id: str

    @property
    def dedup_key(self) -> tuple:
        return (self.platform, self.platform_team_id, self.start_time, self.end_time)

    @property
    def sync_key(self) -> str:
        return sync_key(self.profile_id, self.platform_team_id, self.platform)


@dataclass
class ProcessedBatch:
    """Canonical events ready for reconciliation."""
    events: List[CanonicalEvent]
    dropped: int = 0
    skipped: int = 0


@dataclass
class SyncResult:
    """Result of a sync operation."""
    event_count: int
    team_name: str
    added: int = 0
    updated: int = 0
    deleted: int = 0


def sync_key(profile_id: str, team_id: str, platform: str) -> str:
    """Store key for the (profile, team, platform) slice of events."""
    return f"{profile_id}#{team_id}#{platform}"
