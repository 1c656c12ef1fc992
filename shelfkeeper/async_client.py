"""Async HTTP client for parallel work fetches."""
import asyncio
import httpx
from typing import List, Dict, Any, Optional, Union
import logging

from shelfkeeper.errors import NotFoundError, UpstreamUnavailableError, ShelfkeeperError

logger = logging.getLogger(__name__)

FetchResult = Union[Dict[str, Any], ShelfkeeperError]


class AsyncOpenLibraryClient:
    """Async client for bulk work fetches."""

    BASE_URL = "https://openlibrary.org"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 3,
        max_concurrent: int = 5,
        user_agent: str = "shelfkeeper/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize async client.

        Args:
            base_url: API root
            timeout: Request timeout
            max_concurrent: Maximum concurrent requests
            user_agent: User-Agent header
            transport: Optional httpx transport, mostly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            transport=transport
        )

    async def fetch_work(self, external_id: str) -> Dict[str, Any]:
        """
        Fetch one work asynchronously.

        Raises:
            NotFoundError: 404 from the catalog
            UpstreamUnavailableError: anything else that is not a 200
        """
        url = f"{self.base_url}/works/{external_id}.json"

        # Use semaphore to limit concurrency
        async with self.semaphore:
            try:
                logger.info(f"Async request: {url}")
                response = await self.client.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"Async request failed for {external_id}: {e}")
                raise UpstreamUnavailableError(
                    f"Open Library is unavailable, could not fetch {external_id}"
                ) from e

        if response.status_code == 404:
            raise NotFoundError(f"Book {external_id} not found in Open Library")
        if response.status_code != 200:
            logger.warning(f"Status {response.status_code} for {external_id}")
            raise UpstreamUnavailableError(
                f"Open Library answered {response.status_code} for {external_id}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                f"Open Library returned an unreadable body for {external_id}"
            ) from e

    async def fetch_many(self, external_ids: List[str]) -> Dict[str, FetchResult]:
        """
        Fetch several works in parallel.

        Args:
            external_ids: Work ids, duplicates are fetched once

        Returns:
            Mapping of id to the work document, or to the error it raised
        """
        unique_ids = list(dict.fromkeys(external_ids))

        async def _one(external_id):
            try:
                return await self.fetch_work(external_id)
            except ShelfkeeperError as e:
                return e

        results = await asyncio.gather(*(_one(i) for i in unique_ids))
        return dict(zip(unique_ids, results))

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()


class PrefetchedCatalog:
    """Serves results of fetch_many through the synchronous fetch_work interface."""

    def __init__(self, results: Dict[str, FetchResult]):
        self.results = results

    def fetch_work(self, external_id: str) -> Dict[str, Any]:
        result = self.results.get(external_id)
        if result is None:
            raise UpstreamUnavailableError(f"{external_id} was not prefetched")
        if isinstance(result, ShelfkeeperError):
            raise result
        return result
