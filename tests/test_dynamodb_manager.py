"""Unit tests for DynamoDB manager."""
import time
from dataclasses import replace
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from conftest import make_event
from processor.exceptions import (
    PersistenceFailure,
    SyncInProgress,
    TimezoneLookupFailure,
)


def client_error(code='InternalServerError'):
    return ClientError({'Error': {'Code': code, 'Message': 'boom'}}, 'Operation')


class TestTeamStatus:
    """Test cases for team status operations."""

    def test_update_team_status(self, dynamodb_manager, dynamodb_tables):
        dynamodb_manager.update_team_status(
            'team-1', 'success', team_name='Thunder', last_synced='2025-06-15T18:00:00Z'
        )

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item['sync_status'] == 'success'
        assert item['team_name'] == 'Thunder'
        assert item['last_synced'] == '2025-06-15T18:00:00Z'

    def test_update_status_keeps_other_fields(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['teams'].put_item(
            Item={'id': 'team-1', 'sport': 'Soccer', 'team_name': 'Thunder'}
        )

        dynamodb_manager.update_team_status('team-1', 'pending')

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item['sync_status'] == 'pending'
        assert item['sport'] == 'Soccer'
        assert item['team_name'] == 'Thunder'
        assert 'last_synced' not in item

    def test_update_status_of_unknown_team_does_not_create_it(self, dynamodb_manager,
                                                               dynamodb_tables):
        with pytest.raises(PersistenceFailure):
            dynamodb_manager.update_team_status('missing', 'pending')

        assert 'Item' not in dynamodb_tables['teams'].get_item(Key={'id': 'missing'})

    def test_update_status_error_raises_persistence_failure(self, dynamodb_manager):
        with patch.object(dynamodb_manager.teams, 'update_item', side_effect=client_error()):
            with pytest.raises(PersistenceFailure):
                dynamodb_manager.update_team_status('team-1', 'pending')

    def test_get_team_sport(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['teams'].put_item(Item={'id': 'team-1', 'sport': 'Lacrosse'})

        assert dynamodb_manager.get_team_sport('team-1') == 'Lacrosse'
        assert dynamodb_manager.get_team_sport('missing') == 'Unknown'


class TestSyncLock:
    """Test cases for the per-triple advisory lock."""

    LOCK_KEY = 'profile-1#team-1#SportsEngine'

    def test_lock_is_exclusive(self, dynamodb_manager):
        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-a', 300)

        with pytest.raises(SyncInProgress):
            dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-b', 300)

    def test_locks_of_other_profiles_are_independent(self, dynamodb_manager, dynamodb_tables):
        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-a', 300)

        dynamodb_manager.acquire_sync_lock(
            'team-1', 'profile-2#team-1#SportsEngine', 'token-b', 300
        )

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item['sync_lock:profile-1#team-1#SportsEngine'] == 'token-a'
        assert item['sync_lock:profile-2#team-1#SportsEngine'] == 'token-b'

    def test_release_allows_next_holder(self, dynamodb_manager, dynamodb_tables):
        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-a', 300)
        dynamodb_manager.release_sync_lock('team-1', self.LOCK_KEY, 'token-a')

        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-b', 300)

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item[f'sync_lock:{self.LOCK_KEY}'] == 'token-b'

    def test_expired_lock_is_taken_over(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['teams'].put_item(Item={
            'id': 'team-1',
            f'sync_lock:{self.LOCK_KEY}': 'stale-token',
            f'sync_lock_expires:{self.LOCK_KEY}': int(time.time()) - 10
        })

        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-a', 300)

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item[f'sync_lock:{self.LOCK_KEY}'] == 'token-a'

    def test_release_with_foreign_token_keeps_lock(self, dynamodb_manager, dynamodb_tables):
        dynamodb_manager.acquire_sync_lock('team-1', self.LOCK_KEY, 'token-a', 300)

        dynamodb_manager.release_sync_lock('team-1', self.LOCK_KEY, 'token-b')

        item = dynamodb_tables['teams'].get_item(Key={'id': 'team-1'})['Item']
        assert item[f'sync_lock:{self.LOCK_KEY}'] == 'token-a'

    def test_lock_on_unknown_team_raises_persistence_failure(self, dynamodb_manager,
                                                            dynamodb_tables):
        with pytest.raises(PersistenceFailure) as exc_info:
            dynamodb_manager.acquire_sync_lock('missing', self.LOCK_KEY, 'token-a', 300)

        assert not isinstance(exc_info.value, SyncInProgress)
        assert 'Item' not in dynamodb_tables['teams'].get_item(Key={'id': 'missing'})


class TestUserTimezone:
    """Test cases for the profile -> user -> settings lookup."""

    def test_timezone_found(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['profiles'].put_item(Item={'id': 'profile-1', 'user_id': 'user-1'})
        dynamodb_tables['user_settings'].put_item(
            Item={'user_id': 'user-1', 'timezone': 'America/Chicago'}
        )

        assert dynamodb_manager.get_user_timezone('profile-1') == 'America/Chicago'

    def test_settings_without_timezone_default_to_utc(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['profiles'].put_item(Item={'id': 'profile-1', 'user_id': 'user-1'})
        dynamodb_tables['user_settings'].put_item(Item={'user_id': 'user-1'})

        assert dynamodb_manager.get_user_timezone('profile-1') == 'UTC'

    def test_missing_profile_raises_lookup_failure(self, dynamodb_manager):
        with pytest.raises(TimezoneLookupFailure):
            dynamodb_manager.get_user_timezone('unknown-profile')

    def test_missing_settings_raises_lookup_failure(self, dynamodb_manager, dynamodb_tables):
        dynamodb_tables['profiles'].put_item(Item={'id': 'profile-1', 'user_id': 'user-1'})

        with pytest.raises(TimezoneLookupFailure):
            dynamodb_manager.get_user_timezone('profile-1')


class TestEvents:
    """Test cases for event storage."""

    def test_get_events_for_triple_empty(self, dynamodb_manager):
        assert dynamodb_manager.get_events_for_triple('profile-1', 'team-1', 'SportsEngine') == {}

    def test_batch_write_and_read_back(self, dynamodb_manager):
        event = make_event(1)

        count = dynamodb_manager.batch_write_events([event])

        stored = dynamodb_manager.get_events_for_triple('profile-1', 'team-1', 'SportsEngine')
        assert count == 1
        assert stored == {event.event_id: event}

    def test_query_is_scoped_to_triple(self, dynamodb_manager):
        dynamodb_manager.batch_write_events([
            make_event(1),
            make_event(2, profile_id='profile-2'),
            make_event(3, team_id='team-2'),
        ])

        stored = dynamodb_manager.get_events_for_triple('profile-1', 'team-1', 'SportsEngine')

        assert list(stored) == ['event-profile-1-team-1-1']

    def test_batch_write_events_large_batch(self, dynamodb_manager):
        """Test batch_write_events with more than 25 events (batch limit)."""
        events = [
            replace(make_event(i % 24), event_id=f"event-{i}", end_time=f"2025-06-16T00:{i:02d}:00Z")
            for i in range(30)
        ]

        count = dynamodb_manager.batch_write_events(events)

        assert count == 30
        stored = dynamodb_manager.get_events_for_triple('profile-1', 'team-1', 'SportsEngine')
        assert len(stored) == 30

    def test_batch_delete_events(self, dynamodb_manager):
        events = [make_event(i) for i in range(3)]
        dynamodb_manager.batch_write_events(events)

        deleted = dynamodb_manager.batch_delete_events([events[0].event_id])

        stored = dynamodb_manager.get_events_for_triple('profile-1', 'team-1', 'SportsEngine')
        assert deleted == 1
        assert set(stored) == {events[1].event_id, events[2].event_id}

    def test_batch_write_empty(self, dynamodb_manager):
        assert dynamodb_manager.batch_write_events([]) == 0
        assert dynamodb_manager.batch_delete_events([]) == 0

    def test_batch_write_error_raises_persistence_failure(self, dynamodb_manager):
        with patch.object(dynamodb_manager.events, 'batch_writer', side_effect=client_error()):
            with pytest.raises(PersistenceFailure):
                dynamodb_manager.batch_write_events([make_event(1)])
