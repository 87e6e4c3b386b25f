"""Shared fixtures for DynamoDB-backed tests."""
import os
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from processor.models import CanonicalEvent, SyncContext
from storage.dynamodb_manager import DynamoDBManager

TABLES = {
    'events': 'test-events',
    'teams': 'test-platform-teams',
    'profiles': 'test-profiles',
    'user_settings': 'test-user-settings',
}


@pytest.fixture
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


def _hash_table(dynamodb, name, key):
    return dynamodb.create_table(
        TableName=name,
        KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def dynamodb_tables(aws_credentials):
    """Create mock DynamoDB tables for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        events = dynamodb.create_table(
            TableName=TABLES['events'],
            KeySchema=[{'AttributeName': 'event_id', 'KeyType': 'HASH'}],
            AttributeDefinitions=[
                {'AttributeName': 'event_id', 'AttributeType': 'S'},
                {'AttributeName': 'sync_key', 'AttributeType': 'S'}
            ],
            GlobalSecondaryIndexes=[
                {
                    'IndexName': 'sync-key-index',
                    'KeySchema': [
                        {'AttributeName': 'sync_key', 'KeyType': 'HASH'}
                    ],
                    'Projection': {'ProjectionType': 'ALL'}
                }
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        teams = _hash_table(dynamodb, TABLES['teams'], 'id')
        # Team rows are created when a feed is connected, before any sync
        teams.put_item(Item={'id': 'team-1'})

        yield {
            'events': events,
            'teams': teams,
            'profiles': _hash_table(dynamodb, TABLES['profiles'], 'id'),
            'user_settings': _hash_table(dynamodb, TABLES['user_settings'], 'user_id'),
        }


@pytest.fixture
def dynamodb_manager(dynamodb_tables):
    """Create DynamoDBManager instance with mock tables."""
    return DynamoDBManager(
        events_table=TABLES['events'],
        teams_table=TABLES['teams'],
        profiles_table=TABLES['profiles'],
        user_settings_table=TABLES['user_settings'],
        region_name='us-east-1'
    )


@pytest.fixture
def sync_context():
    return SyncContext(
        team_id='team-1',
        profile_id='profile-1',
        platform='SportsEngine',
        platform_color='#2563EB',
        feed_url='https://example.com/calendar/team-1.ics',
        sport='Soccer',
        user_timezone='UTC'
    )


def make_event(index: int, profile_id: str = 'profile-1', team_id: str = 'team-1',
               title: str = None) -> CanonicalEvent:
    """Build a canonical event starting ``index`` hours after a fixed time."""
    return CanonicalEvent(
        event_id=f'event-{profile_id}-{team_id}-{index}',
        title=title or f'Game vs Opponent {index}',
        description=f'Description {index}',
        start_time=f'2025-06-15T{index:02d}:00:00Z',
        end_time=f'2025-06-15T{index:02d}:30:00Z',
        location='Field 1',
        sport='Soccer',
        color='#2563EB',
        platform='SportsEngine',
        platform_color='#2563EB',
        profile_id=profile_id,
        platform_team_id=team_id
    )
