"""Collapse canonical events describing the same occurrence."""
import logging
from dataclasses import dataclass
from typing import List

from processor.models import CanonicalEvent

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Deduplicated events and how many duplicates were dropped."""
    events: List[CanonicalEvent]
    dropped: int


def deduplicate_events(events: List[CanonicalEvent]) -> DedupResult:
    """
    Keep the first event seen for each (platform, team, start, end) key.

    Args:
        events: Canonical events in feed order

    Returns:
        DedupResult preserving the input order of kept events
    """
    unique = {}
    for event in events:
        unique.setdefault(event.dedup_key, event)

    kept = list(unique.values())
    dropped = len(events) - len(kept)
    logger.info(f"Deduplicated events: {len(kept)} from original: {len(events)}")
    if dropped:
        logger.warning(f"Dropped {dropped} duplicate events")

    return DedupResult(events=kept, dropped=dropped)
