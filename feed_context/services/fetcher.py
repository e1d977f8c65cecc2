"""Conditional HTTP fetcher for feeds.

Sends the stored cache validators (ETag / Last-Modified) so unchanged feeds come
back as 304 Not Modified without a body.
"""

from typing import Optional

import httpx

from feed_context.errors import TransportError
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import NOT_MODIFIED, FetchResult

USER_AGENT = "FeedContext/1.0 (RSS Feed Reader)"


class FeedFetcher:
    """Fetches raw feed documents over HTTP."""

    def __init__(self, timeout: float = 30.0, user_agent: str = USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(
        self,
        url: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> FetchResult:
        """Fetch a feed, honoring cache validators.

        Args:
            url: Feed URL
            etag: ETag from the previous successful fetch
            last_modified: Last-Modified from the previous successful fetch

        Returns:
            FetchResult; ``status_code == 304`` means the feed has not changed

        Raises:
            TransportError: On network failure or a non-success HTTP status
        """
        logger = UnifiedLogger.get_logger(__name__)
        logger.info(f"Fetching feed: {url}")

        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
        ) as client:
            try:
                response = await client.get(url, headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"Failed to fetch feed {url}: {e}")
                raise TransportError(f"Failed to fetch {url}: {e}") from e

        if response.status_code == NOT_MODIFIED:
            logger.info(f"Feed not modified: {url}")
            return FetchResult(status_code=NOT_MODIFIED)

        if not 200 <= response.status_code < 300:
            logger.error(f"Feed {url} returned HTTP {response.status_code}")
            raise TransportError(f"HTTP {response.status_code} fetching {url}")

        return FetchResult(
            status_code=response.status_code,
            content=response.text,
            content_type=response.headers.get("content-type", "application/xml"),
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )
