"""Calendar feed fetcher for ICS/webcal subscription URLs."""
import logging
import re

import requests

from processor.exceptions import FetchFailure
from processor.models import RawCalendarDocument

logger = logging.getLogger(__name__)

_WEBCAL_PATTERN = re.compile(r'^webcal://', re.IGNORECASE)


def normalize_feed_url(url: str) -> str:
    """
    Rewrite a feed reference into the URL that is actually requested.

    ``webcal://`` only hints that the resource is a subscribable calendar;
    it is served over HTTPS.

    Args:
        url: Feed reference supplied by the caller

    Returns:
        HTTP(S) URL to fetch

    Raises:
        FetchFailure: If the reference is empty or uses another scheme
    """
    if not url or not url.strip():
        raise FetchFailure("Calendar URL is empty")

    url = url.strip()
    if _WEBCAL_PATTERN.match(url):
        normalized = _WEBCAL_PATTERN.sub('https://', url)
        logger.info(f"Converted webcal URL to https for fetching: {normalized}")
        return normalized

    if not url.lower().startswith(('http://', 'https://')):
        raise FetchFailure(f"Unsupported calendar URL scheme: {url}")

    return url


class FeedFetcher:
    """Fetcher for remote iCalendar feeds."""

    HEADERS = {
        'Accept': 'text/calendar',
        'Cache-Control': 'no-cache'
    }

    def __init__(self, timeout: int = 30):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def fetch(self, url: str) -> RawCalendarDocument:
        """
        Fetch raw ICS text for a feed reference.

        A single attempt is made; retrying is left to the next invocation.

        Args:
            url: Feed URL (``https://``, ``http://`` or ``webcal://``)

        Returns:
            RawCalendarDocument with the response body

        Raises:
            FetchFailure: On a transport error or a non-2xx response
        """
        fetch_url = normalize_feed_url(url)
        logger.info(f"Fetching ICS file from: {fetch_url}")

        try:
            response = requests.get(
                fetch_url,
                headers=self.HEADERS,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Transport error fetching calendar {fetch_url}: {e}")
            raise FetchFailure(f"Failed to fetch calendar: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(
                f"Failed to fetch ICS file: {response.status_code} "
                f"{response.reason} ({fetch_url})"
            )
            raise FetchFailure(
                f"Failed to fetch calendar: {response.status_code} {response.reason}",
                status_code=response.status_code,
                reason=response.reason
            )

        # iCalendar defaults to UTF-8; requests would assume ISO-8859-1
        if 'charset' not in response.headers.get('Content-Type', '').lower():
            response.encoding = 'utf-8'

        text = response.text
        logger.info(f"Successfully fetched ICS data, length: {len(text)}")
        return RawCalendarDocument(
            url=fetch_url,
            text=text,
            status_code=response.status_code,
            byte_length=len(response.content)
        )
