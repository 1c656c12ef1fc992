"""HTTP client for the Open Library works API with resilience patterns."""
import time
import random
import requests
from typing import Dict, Any
import logging

from shelfkeeper.errors import NotFoundError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


class OpenLibraryClient:
    """Client for Open Library work records with timeouts, retries, and backoff."""

    BASE_URL = "https://openlibrary.org"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 3,
        max_retries: int = 2,
        base_backoff: float = 0.25,
        user_agent: str = "shelfkeeper/1.0"
    ):
        """
        Initialize Open Library client.

        Args:
            base_url: API root
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts per fetch
            base_backoff: Base delay for exponential backoff
            user_agent: Sent with every request, Open Library asks for one
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_backoff = base_backoff

        # Create session for connection pooling
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def work_url(self, external_id: str) -> str:
        return f"{self.base_url}/works/{external_id}.json"

    def fetch_work(self, external_id: str) -> Dict[str, Any]:
        """
        Fetch one work record.

        Args:
            external_id: Open Library work id, e.g. "OL45804W"

        Returns:
            Decoded work document

        Raises:
            NotFoundError: the catalog does not know the id
            UpstreamUnavailableError: timeouts, connection errors, 429/5xx
                after all retries, or an undecodable body
        """
        url = self.work_url(external_id)

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Request attempt {attempt + 1}/{self.max_retries}: {url}")

                response = self.session.get(url, timeout=self.timeout)

                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise UpstreamUnavailableError(
                            f"Open Library returned an unreadable body for {external_id}"
                        ) from e

                elif response.status_code == 404:
                    raise NotFoundError(f"Book {external_id} not found in Open Library")

                elif response.status_code == 429 or response.status_code >= 500:
                    # Rate limited or server error - retryable
                    logger.warning(f"Upstream status {response.status_code} on attempt {attempt + 1}")

                else:
                    # Client error - don't retry
                    logger.error(f"Client error ({response.status_code}) fetching {external_id}")
                    raise UpstreamUnavailableError(
                        f"Open Library rejected the request for {external_id} ({response.status_code})"
                    )

            except requests.exceptions.Timeout:
                logger.warning(f"Timeout on attempt {attempt + 1}")

            except requests.exceptions.ConnectionError as e:
                logger.warning(f"Connection error on attempt {attempt + 1}: {e}")

            except requests.exceptions.RequestException as e:
                # Broken bodies, decoding failures, redirect loops
                logger.warning(f"Request failed on attempt {attempt + 1}: {e}")

            if attempt < self.max_retries - 1:
                self._backoff(attempt)

        logger.error(f"All {self.max_retries} attempts failed for {external_id}")
        raise UpstreamUnavailableError(f"Open Library is unavailable, could not fetch {external_id}")

    def _backoff(self, attempt: int):
        """
        Sleep with exponential backoff and jitter.

        Args:
            attempt: Current attempt number (0-indexed)
        """
        delay = self.base_backoff * (2 ** attempt)
        jitter = random.uniform(0, delay)
        total_delay = delay + jitter

        logger.info(f"Backing off for {total_delay:.2f} seconds")
        time.sleep(total_delay)

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
