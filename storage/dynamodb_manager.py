"""DynamoDB manager for team, event and user-setting storage operations."""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.exceptions import (
    PersistenceFailure,
    SyncInProgress,
    TimezoneLookupFailure,
)
from processor.models import CanonicalEvent, sync_key

logger = logging.getLogger(__name__)

SYNC_KEY_INDEX = 'sync-key-index'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def lock_attributes(lock_key: str) -> Tuple[str, str]:
    """Team item attribute names holding the lock token and expiry for a sync key."""
    return f"sync_lock:{lock_key}", f"sync_lock_expires:{lock_key}"


class DynamoDBManager:
    """Manager for DynamoDB operations."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(
        self,
        events_table: str,
        teams_table: str,
        profiles_table: str,
        user_settings_table: str,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table references.

        Args:
            events_table: Table holding canonical events (hash key ``event_id``)
            teams_table: Table holding platform teams (hash key ``id``)
            profiles_table: Table mapping profile ``id`` to ``user_id``
            user_settings_table: Table mapping ``user_id`` to ``timezone``
            region_name: AWS region, defaults to the environment's
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.events = self.dynamodb.Table(events_table)
        self.teams = self.dynamodb.Table(teams_table)
        self.profiles = self.dynamodb.Table(profiles_table)
        self.user_settings = self.dynamodb.Table(user_settings_table)
        logger.info(f"Initialized DynamoDBManager for events table: {events_table}")

    # Teams

    def update_team_status(
        self,
        team_id: str,
        status: str,
        team_name: Optional[str] = None,
        last_synced: Optional[str] = None
    ) -> None:
        """
        Write a team's sync status and, optionally, its name.

        Args:
            team_id: Platform team id
            status: One of pending, success, error
            team_name: Derived team name to store
            last_synced: ISO timestamp to store as ``last_synced``

        Raises:
            PersistenceFailure: If the update fails
        """
        names = {'#id': 'id', '#status': 'sync_status'}
        values = {':status': status}
        assignments = ['#status = :status']

        if team_name is not None:
            names['#name'] = 'team_name'
            values[':name'] = team_name
            assignments.append('#name = :name')
        if last_synced is not None:
            names['#synced'] = 'last_synced'
            values[':synced'] = last_synced
            assignments.append('#synced = :synced')

        try:
            self.teams.update_item(
                Key={'id': team_id},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(#id)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.error(f"Cannot update sync status of unknown team {team_id}")
                raise PersistenceFailure(f"Team {team_id} not found") from e
            logger.error(f"Error updating sync status for team {team_id}: {e}")
            raise PersistenceFailure(f"Failed to update team {team_id}: {e}") from e

        logger.info(f"Team {team_id} sync status set to {status}")

    def get_team(self, team_id: str) -> Optional[dict]:
        """Return the stored team item or None."""
        try:
            response = self.teams.get_item(Key={'id': team_id})
        except ClientError as e:
            logger.error(f"Error reading team {team_id}: {e}")
            raise PersistenceFailure(f"Failed to read team {team_id}: {e}") from e
        return response.get('Item')

    def get_team_sport(self, team_id: str, default: str = 'Unknown') -> str:
        """Return the sport recorded for a team, or ``default``."""
        try:
            item = self.get_team(team_id)
        except PersistenceFailure:
            return default
        return (item or {}).get('sport') or default

    def acquire_sync_lock(
        self,
        team_id: str,
        lock_key: str,
        token: str,
        ttl_seconds: int
    ) -> None:
        """
        Take the advisory sync lock of one (profile, team, platform) slice.

        Locks live on the team item, one attribute pair per sync key, so
        syncs of different profiles for the same team do not block each
        other. An expired lock left by a killed invocation is taken over.

        Args:
            team_id: Platform team id
            lock_key: Sync key of the slice being replaced
            token: Invocation-unique lock token
            ttl_seconds: Lock lifetime

        Raises:
            SyncInProgress: If another live invocation holds the lock
            PersistenceFailure: If the team does not exist or the store fails
        """
        now = int(datetime.now(timezone.utc).timestamp())
        lock_attr, expires_attr = lock_attributes(lock_key)
        try:
            self.teams.update_item(
                Key={'id': team_id},
                UpdateExpression='SET #lock = :token, #expires = :expires',
                ConditionExpression=(
                    'attribute_exists(#id) AND '
                    '(attribute_not_exists(#lock) OR #expires < :now)'
                ),
                ExpressionAttributeNames={
                    '#id': 'id',
                    '#lock': lock_attr,
                    '#expires': expires_attr
                },
                ExpressionAttributeValues={
                    ':token': token,
                    ':expires': now + ttl_seconds,
                    ':now': now
                }
            )
        except ClientError as e:
            if e.response['Error']['Code'] != 'ConditionalCheckFailedException':
                raise PersistenceFailure(f"Failed to lock {lock_key}: {e}") from e
            if self.get_team(team_id) is None:
                raise PersistenceFailure(f"Team {team_id} not found") from e
            logger.warning(f"Sync already in progress for {lock_key}")
            raise SyncInProgress(f"Sync already in progress for {lock_key}") from e

    def release_sync_lock(self, team_id: str, lock_key: str, token: str) -> None:
        """Release the slice's lock if this invocation still holds it."""
        lock_attr, expires_attr = lock_attributes(lock_key)
        try:
            self.teams.update_item(
                Key={'id': team_id},
                UpdateExpression='REMOVE #lock, #expires',
                ConditionExpression='#lock = :token',
                ExpressionAttributeNames={
                    '#lock': lock_attr,
                    '#expires': expires_attr
                },
                ExpressionAttributeValues={':token': token}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Sync lock for {lock_key} was taken over")
                return
            raise PersistenceFailure(f"Failed to unlock {lock_key}: {e}") from e

    # User settings

    def get_user_timezone(self, profile_id: str) -> str:
        """
        Look up the timezone of the user owning a profile.

        Args:
            profile_id: Child profile id

        Returns:
            Timezone name; 'UTC' when the user has none configured

        Raises:
            TimezoneLookupFailure: If the profile or user settings are missing
        """
        try:
            profile = self.profiles.get_item(Key={'id': profile_id}).get('Item')
            if not profile or not profile.get('user_id'):
                raise TimezoneLookupFailure(f"Profile {profile_id} not found")

            settings = self.user_settings.get_item(
                Key={'user_id': profile['user_id']}
            ).get('Item')
            if settings is None:
                raise TimezoneLookupFailure(
                    f"No settings for user {profile['user_id']}"
                )
        except ClientError as e:
            raise TimezoneLookupFailure(
                f"Error reading timezone for profile {profile_id}: {e}"
            ) from e

        return settings.get('timezone') or 'UTC'

    # Events

    def get_events_for_triple(
        self,
        profile_id: str,
        team_id: str,
        platform: str
    ) -> Dict[str, CanonicalEvent]:
        """
        Retrieve all stored events for a (profile, team, platform) triple.

        Returns:
            Dictionary mapping event_id to CanonicalEvent objects
        """
        key = sync_key(profile_id, team_id, platform)
        events = {}

        try:
            response = self.events.query(
                IndexName=SYNC_KEY_INDEX,
                KeyConditionExpression=Key('sync_key').eq(key)
            )
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.events.query(
                    IndexName=SYNC_KEY_INDEX,
                    KeyConditionExpression=Key('sync_key').eq(key),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error querying events for {key}: {e}")
            raise PersistenceFailure(f"Failed to read events for {key}: {e}") from e

        for item in items:
            event = self._item_to_canonical_event(item)
            if event:
                events[event.event_id] = event

        logger.info(f"Retrieved {len(events)} stored events for {key}")
        return events

    def batch_write_events(self, events: List[CanonicalEvent]) -> int:
        """
        Write events to DynamoDB in batches of 25 items.

        Args:
            events: List of CanonicalEvent objects to write

        Returns:
            Count of written events

        Raises:
            PersistenceFailure: If any batch fails
        """
        if not events:
            return 0

        logger.info(f"Writing {len(events)} events to DynamoDB")
        success_count = 0
        synced_at = utc_now_iso()

        for i in range(0, len(events), self.BATCH_SIZE):
            batch = events[i:i + self.BATCH_SIZE]

            try:
                with self.events.batch_writer() as writer:
                    for event in batch:
                        writer.put_item(Item=self._canonical_event_to_item(event, synced_at))
                success_count += len(batch)
            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise PersistenceFailure(
                    f"Failed to insert events after {success_count} writes: {e}"
                ) from e

        logger.info(f"Successfully wrote {success_count} events")
        return success_count

    def batch_delete_events(self, event_ids: List[str]) -> int:
        """
        Delete events from DynamoDB in batches of 25 items.

        Args:
            event_ids: List of event IDs to delete

        Returns:
            Count of deleted events

        Raises:
            PersistenceFailure: If any batch fails
        """
        if not event_ids:
            return 0

        logger.info(f"Deleting {len(event_ids)} events from DynamoDB")
        success_count = 0

        for i in range(0, len(event_ids), self.BATCH_SIZE):
            batch = event_ids[i:i + self.BATCH_SIZE]

            try:
                with self.events.batch_writer() as writer:
                    for event_id in batch:
                        writer.delete_item(Key={'event_id': event_id})
                success_count += len(batch)
            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise PersistenceFailure(
                    f"Failed to delete existing events: {e}"
                ) from e

        logger.info(f"Successfully deleted {success_count} events")
        return success_count

    def _item_to_canonical_event(self, item: dict) -> Optional[CanonicalEvent]:
        """
        Convert DynamoDB item to CanonicalEvent object.

        Returns:
            CanonicalEvent object or None if conversion fails
        """
        try:
            return CanonicalEvent(
                event_id=item['event_id'],
                title=item['title'],
                description=item.get('description', ''),
                start_time=item['start_time'],
                end_time=item['end_time'],
                location=item.get('location', ''),
                sport=item.get('sport', 'Unknown'),
                color=item.get('color', ''),
                platform=item['platform'],
                platform_color=item.get('platform_color', ''),
                profile_id=item['profile_id'],
                platform_team_id=item['platform_team_id']
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to CanonicalEvent: {e}")
            return None

    def _canonical_event_to_item(self, event: CanonicalEvent, synced_at: str) -> dict:
        """Convert CanonicalEvent object to DynamoDB item."""
        return {
            'event_id': event.event_id,
            'sync_key': event.sync_key,
            'title': event.title,
            'description': event.description,
            'start_time': event.start_time,
            'end_time': event.end_time,
            'location': event.location,
            'sport': event.sport,
            'color': event.color,
            'platform': event.platform,
            'platform_color': event.platform_color,
            'profile_id': event.profile_id,
            'platform_team_id': event.platform_team_id,
            'last_updated': synced_at
        }
