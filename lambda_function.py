"""AWS Lambda handler for team calendar (ICS) sync."""
import base64
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from feed.fetcher import FeedFetcher
from feed.ics_parser import IcsParser
from processor.event_processor import EventProcessor
from processor.exceptions import (
    CalendarSyncError,
    SyncInProgress,
    TimezoneLookupFailure,
)
from processor.models import SyncContext
from storage.dynamodb_manager import DynamoDBManager
from storage.sync_reconciler import SyncReconciler

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization',
}

_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message'}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS and not key.startswith('_'):
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class SyncRequest:
    """Validated invocation payload."""
    ics_url: str
    team_id: str
    profile_id: Optional[str]


def parse_request(event: Dict[str, Any]) -> SyncRequest:
    """
    Extract the sync request from an API Gateway or function URL event.

    Raises:
        ValueError: If the body is not JSON or required fields are missing
    """
    body = event.get('body')
    if body is None:
        # Direct invocation with the payload as the event itself
        payload = event
    else:
        if event.get('isBase64Encoded'):
            body = base64.b64decode(body).decode('utf-8')
        try:
            payload = json.loads(body) if isinstance(body, str) else body
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON body: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")

    ics_url = payload.get('icsUrl')
    team_id = payload.get('teamId')
    if not ics_url or not team_id:
        raise ValueError("Missing required parameters: icsUrl or teamId")

    return SyncRequest(
        ics_url=ics_url,
        team_id=str(team_id),
        profile_id=str(payload['profileId']) if payload.get('profileId') else None
    )


def http_method(event: Dict[str, Any]) -> str:
    method = event.get('httpMethod')
    if not method:
        method = event.get('requestContext', {}).get('http', {}).get('method', 'POST')
    return method.upper()


def json_response(status_code: int, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {**CORS_HEADERS, 'Content-Type': 'application/json'},
        'body': json.dumps(payload)
    }


def error_response(error: Exception) -> Dict[str, Any]:
    payload = {'success': False, 'error': str(error) or type(error).__name__}
    if error.__cause__ is not None:
        payload['details'] = f"{type(error.__cause__).__name__}: {error.__cause__}"
    return json_response(500, payload)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for calendar sync.

    Args:
        event: API Gateway / function URL event with a JSON body of
            ``{icsUrl, teamId, profileId}``
        context: Lambda context object

    Returns:
        Proxy response dict with statusCode, headers and JSON body
    """
    # Read configuration from environment variables
    events_table = os.environ.get('EVENTS_TABLE', 'events')
    teams_table = os.environ.get('TEAMS_TABLE', 'platform_teams')
    profiles_table = os.environ.get('PROFILES_TABLE', 'profiles')
    user_settings_table = os.environ.get('USER_SETTINGS_TABLE', 'user_settings')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
    lock_ttl_seconds = int(os.environ.get('SYNC_LOCK_TTL_SECONDS', '300'))
    platform = os.environ.get('PLATFORM_NAME', 'SportsEngine')
    platform_color = os.environ.get('PLATFORM_COLOR', '#2563EB')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    if http_method(event) == 'OPTIONS':
        return {'statusCode': 204, 'headers': dict(CORS_HEADERS), 'body': ''}

    start_time = time.time()

    try:
        request = parse_request(event)
    except ValueError as e:
        logger.error(f"Invalid sync request: {e}")
        return error_response(e)

    logger.info(
        "Lambda execution started",
        extra={
            'team_id': request.team_id,
            'profile_id': request.profile_id,
            'events_table': events_table
        }
    )

    reconciler = None
    try:
        fetcher = FeedFetcher(timeout=timeout_seconds)
        parser = IcsParser(platform=platform)
        processor = EventProcessor()
        dynamodb_manager = DynamoDBManager(
            events_table=events_table,
            teams_table=teams_table,
            profiles_table=profiles_table,
            user_settings_table=user_settings_table
        )
        reconciler = SyncReconciler(dynamodb_manager, lock_ttl_seconds=lock_ttl_seconds)

        reconciler.mark_pending(request.team_id)

        logger.info("Fetching calendar feed")
        document = fetcher.fetch(request.ics_url)

        logger.info("Parsing calendar feed")
        calendar = parser.parse(document.text, request.ics_url)

        # Without a profile only the team is registered; events follow later
        if request.profile_id is None:
            logger.info("No profile ID provided, returning team info only")
            result = reconciler.register_team(request.team_id, calendar.name)
            message = 'Team calendar synced successfully'
        else:
            try:
                user_timezone = dynamodb_manager.get_user_timezone(request.profile_id)
                logger.info(f"Using user timezone: {user_timezone}")
            except TimezoneLookupFailure as e:
                logger.warning(f"Error getting user timezone, using UTC: {e}")
                user_timezone = 'UTC'

            sync_context = SyncContext(
                team_id=request.team_id,
                profile_id=request.profile_id,
                platform=platform,
                platform_color=platform_color,
                feed_url=request.ics_url,
                sport=dynamodb_manager.get_team_sport(request.team_id),
                user_timezone=user_timezone
            )

            logger.info("Processing calendar events")
            batch = processor.process_events(calendar.events, sync_context)

            logger.info("Reconciling events with DynamoDB")
            result = reconciler.reconcile(sync_context, calendar.name, batch.events)
            message = 'Calendar synced successfully'

            logger.info(
                "Event statistics",
                extra={
                    'parsed': len(calendar.events),
                    'skipped_components': calendar.skipped + batch.skipped,
                    'duplicates_dropped': batch.dropped,
                    'events_added': result.added,
                    'events_updated': result.updated,
                    'events_deleted': result.deleted
                }
            )

    except SyncInProgress as e:
        # The running sync owns the status transition
        logger.error(f"Lambda execution rejected: {e}")
        return error_response(e)

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__,
                'expected': isinstance(e, CalendarSyncError)
            },
            exc_info=True
        )

        if reconciler is not None:
            try:
                reconciler.mark_error(request.team_id)
            except CalendarSyncError as update_error:
                logger.error(
                    f"Error updating team sync status to error: {update_error}"
                )

        return error_response(e)

    duration = time.time() - start_time
    logger.info(
        "Lambda execution completed successfully",
        extra={
            'duration_seconds': round(duration, 2),
            'event_count': result.event_count,
            'team_name': result.team_name
        }
    )

    return json_response(200, {
        'success': True,
        'message': message,
        'eventCount': result.event_count,
        'teamName': result.team_name
    })
