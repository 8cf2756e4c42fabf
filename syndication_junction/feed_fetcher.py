"""
Feed fetcher with retry logic and error handling.
"""
import time
import logging
import requests
from typing import Optional

logger = logging.getLogger(__name__)

# Statuses worth another attempt; anything else non-200 fails at once
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class TransportError(Exception):
    """Raised when a feed cannot be fetched."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FeedFetcher:
    """
    Fetches raw feed text over HTTP.

    Features:
    - Configurable timeout and retry count
    - Exponential backoff on network errors, 429 and 5xx responses
    - Custom User-Agent header
    - Only 200 counts as success
    """

    DEFAULT_USER_AGENT = "Syndication-Junction/1.0 (feed aggregator)"

    def __init__(self, timeout: int = 30, max_retries: int = 3, user_agent: Optional[str] = None):
        """
        Initialize feed fetcher.

        Args:
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            user_agent: Custom User-Agent string
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT

    def fetch(self, url: str) -> str:
        """
        Fetch a feed's raw text.

        Args:
            url: Feed URL

        Returns:
            Response body as text

        Raises:
            ValueError: If URL is empty
            TransportError: If the request fails or returns a non-200 status
        """
        if not url:
            raise ValueError("URL cannot be empty")

        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching feed from {url} (attempt {attempt + 1}/{self.max_retries})")

                headers = {"User-Agent": self.user_agent}
                response = requests.get(url, timeout=self.timeout, headers=headers)

                if response.status_code == 200:
                    # requests assumes ISO-8859-1 for text/* without a charset
                    if "charset" not in response.headers.get("Content-Type", "").lower():
                        response.encoding = "utf-8"
                    return response.text

                last_error = TransportError(
                    f"Request returned non-successful status code: {response.status_code}",
                    url=url,
                    status_code=response.status_code,
                )
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise last_error

            except requests.RequestException as e:
                last_error = TransportError(f"Error making request: {e}", url=url)

            logger.warning(f"Fetch attempt {attempt + 1} failed: {last_error}")

            if attempt < self.max_retries - 1:
                # Exponential backoff
                sleep_time = 2 ** attempt
                logger.info(f"Retrying in {sleep_time} seconds...")
                time.sleep(sleep_time)

        logger.error(f"Failed to fetch feed after {self.max_retries} attempts")
        raise last_error
