"""Event processor turning raw feed events into canonical event rows."""
import hashlib
import logging
from typing import List, Optional

from processor.deduplicator import deduplicate_events
from processor.event_classifier import EventClassifier
from processor.models import (
    CanonicalEvent,
    ProcessedBatch,
    RawEventComponent,
    SyncContext,
)
from processor.timezone_resolver import TimezoneResolver, to_utc_iso

logger = logging.getLogger(__name__)


class EventProcessor:
    """Processor for resolving, classifying and deduplicating events."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def __init__(self, classifier: Optional[EventClassifier] = None):
        self.classifier = classifier or EventClassifier()

    def process_events(
        self,
        raw_events: List[RawEventComponent],
        context: SyncContext
    ) -> ProcessedBatch:
        """
        Process raw feed events into deduplicated canonical events.

        Args:
            raw_events: Events parsed from the feed
            context: Invocation context (profile, team, platform, user zone)

        Returns:
            ProcessedBatch with the canonical events and drop/skip counts
        """
        resolver = TimezoneResolver(context.user_timezone)
        canonical_events = []
        skipped = 0

        for event in raw_events:
            processed_event = self._process_single_event(event, context, resolver)
            if processed_event:
                canonical_events.append(processed_event)
            else:
                skipped += 1

        logger.info(
            f"Processed {len(canonical_events)} valid events out of "
            f"{len(raw_events)} total events",
            extra={'feed_url': context.feed_url}
        )

        result = deduplicate_events(canonical_events)
        return ProcessedBatch(
            events=result.events,
            dropped=result.dropped,
            skipped=skipped
        )

    def _process_single_event(
        self,
        event: RawEventComponent,
        context: SyncContext,
        resolver: TimezoneResolver
    ) -> Optional[CanonicalEvent]:
        """
        Process a single event.

        Returns:
            CanonicalEvent or None if its times are inconsistent
        """
        start, end = resolver.resolve_event(event)
        if end <= start:
            logger.warning(
                f"Skipping event '{event.summary}': end {end.isoformat()} "
                f"is not after start {start.isoformat()} (uid: {event.uid})",
                extra={'uid': event.uid, 'feed_url': context.feed_url}
            )
            return None

        classification = self.classifier.classify(event.summary, event.description)
        logger.debug(
            f"Processing event: {classification.title}",
            extra={'rule': classification.rule}
        )

        start_time = to_utc_iso(start)
        end_time = to_utc_iso(end)

        return CanonicalEvent(
            event_id=self.generate_event_id(
                profile_id=context.profile_id,
                platform=context.platform,
                team_id=context.team_id,
                start_time=start_time,
                end_time=end_time
            ),
            title=classification.title[:self.MAX_TITLE_LENGTH],
            description=classification.description[:self.MAX_DESCRIPTION_LENGTH],
            start_time=start_time,
            end_time=end_time,
            location=event.location,
            sport=context.sport,
            color=context.platform_color,
            platform=context.platform,
            platform_color=context.platform_color,
            profile_id=context.profile_id,
            platform_team_id=context.team_id
        )

    def generate_event_id(
        self,
        profile_id: str,
        platform: str,
        team_id: str,
        start_time: str,
        end_time: str
    ) -> str:
        """
        Generate the store identifier for an event occurrence.

        Args:
            profile_id: Owning profile
            platform: Source platform name
            team_id: Platform team identifier
            start_time: UTC start (ISO 8601)
            end_time: UTC end (ISO 8601)

        Returns:
            Event ID (SHA256 hash)
        """
        composite = f"{profile_id}|{platform}|{team_id}|{start_time}|{end_time}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()
