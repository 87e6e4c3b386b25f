"""Reconciliation of a team's stored events with a freshly parsed feed."""
import logging
import uuid
from typing import List

from processor.exceptions import PersistenceFailure
from processor.models import CanonicalEvent, SyncContext, SyncResult, sync_key
from storage.dynamodb_manager import DynamoDBManager, utc_now_iso

logger = logging.getLogger(__name__)

PENDING = 'pending'
SUCCESS = 'success'
ERROR = 'error'


class SyncReconciler:
    """
    Owns the stored events of each (profile, team, platform) triple.

    Team sync status moves ``pending -> success`` or ``pending -> error``;
    every attempt starts again at ``pending``.
    """

    def __init__(self, store: DynamoDBManager, lock_ttl_seconds: int = 300):
        self.store = store
        self.lock_ttl_seconds = lock_ttl_seconds

    def mark_pending(self, team_id: str) -> None:
        self.store.update_team_status(team_id, PENDING)

    def mark_error(self, team_id: str) -> None:
        self.store.update_team_status(team_id, ERROR, last_synced=utc_now_iso())

    def register_team(self, team_id: str, team_name: str) -> SyncResult:
        """
        Record a team's name without touching events.

        Used for the initial connection call made before a profile is
        assigned to the team.
        """
        logger.info(f"Updating team name to: {team_name}")
        self.store.update_team_status(
            team_id, SUCCESS, team_name=team_name, last_synced=utc_now_iso()
        )
        return SyncResult(event_count=0, team_name=team_name)

    def reconcile(
        self,
        context: SyncContext,
        team_name: str,
        events: List[CanonicalEvent]
    ) -> SyncResult:
        """
        Replace the stored events of the context's triple with ``events``.

        The delete and insert run under the triple's advisory lock so that
        concurrent syncs of the same slice cannot interleave. Syncs of other
        profiles or platforms for the same team proceed independently.

        Args:
            context: Invocation context with a profile id
            team_name: Derived team name
            events: Deduplicated canonical events

        Returns:
            SyncResult with the inserted count and the diff against the
            previously stored set

        Raises:
            SyncInProgress: If another sync holds the triple's lock
            PersistenceFailure: If reading, deleting or inserting fails
        """
        lock_key = sync_key(context.profile_id, context.team_id, context.platform)
        token = uuid.uuid4().hex
        self.store.acquire_sync_lock(
            context.team_id, lock_key, token, self.lock_ttl_seconds
        )
        try:
            existing = self.store.get_events_for_triple(
                context.profile_id, context.team_id, context.platform
            )
            new_events = {event.event_id: event for event in events}

            added = len([eid for eid in new_events if eid not in existing])
            updated = len([
                eid for eid, event in new_events.items()
                if eid in existing and existing[eid] != event
            ])
            stale_ids = [eid for eid in existing if eid not in new_events]
            deleted = len(stale_ids)

            logger.info(
                f"Sync plan: {added} to add, {updated} to update, {deleted} to delete",
                extra={'sync_key': lock_key}
            )

            # Rows whose id survives are overwritten in place by the insert
            logger.info(
                f"Deleting stale events for profile: {context.profile_id} "
                f"and team: {context.team_id}"
            )
            self.store.batch_delete_events(stale_ids)
            inserted = self.store.batch_write_events(events)
        finally:
            try:
                self.store.release_sync_lock(context.team_id, lock_key, token)
            except PersistenceFailure as e:
                logger.error(f"Could not release sync lock for {lock_key}: {e}")

        self.store.update_team_status(
            context.team_id, SUCCESS, team_name=team_name, last_synced=utc_now_iso()
        )
        logger.info(
            f"Sync complete: {added} added, {updated} updated, {deleted} deleted"
        )

        return SyncResult(
            event_count=inserted,
            team_name=team_name,
            added=added,
            updated=updated,
            deleted=deleted
        )
