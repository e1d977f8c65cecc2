"""Shared fixtures for feed_context tests."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Dict, List, Optional, Union
from xml.sax.saxutils import escape

import pytest

from feed_context.errors import TransportError
from feed_context.models.schemas import FetchResult
from feed_context.services.feed_manager import FeedManager, ManagerOptions
from feed_context.storage.database import FeedStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


def rss_item(
    title: str,
    link: Optional[str] = None,
    guid: Optional[str] = None,
    published: Optional[datetime] = None,
    description: str = "",
) -> str:
    parts = [f"<title>{escape(title)}</title>"]
    if link:
        parts.append(f"<link>{escape(link)}</link>")
    if guid:
        parts.append(f'<guid isPermaLink="false">{escape(guid)}</guid>')
    if published:
        parts.append(f"<pubDate>{format_datetime(published)}</pubDate>")
    if description:
        parts.append(f"<description>{escape(description)}</description>")
    return "<item>" + "".join(parts) + "</item>"


def rss_document(title: str = "Tech Daily", items: Optional[List[str]] = None) -> str:
    return f"""<?xml version="1.0"?>
    <rss version="2.0">
        <channel>
            <title>{escape(title)}</title>
            <link>https://example.com/</link>
            <description>Daily tech news</description>
            {''.join(items or [])}
        </channel>
    </rss>
    """


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


class FakeFetcher:
    """In-memory stand-in for FeedFetcher.

    ``responses`` maps a URL to a FetchResult, an exception to raise, or a list
    of those consumed one per call (the last entry repeats).
    """

    def __init__(self):
        self.responses: Dict[str, Union[FetchResult, Exception, list]] = {}
        self.calls: List[tuple] = []

    def serve(self, url: str, content: str, etag: Optional[str] = None,
              last_modified: Optional[str] = None) -> None:
        self.responses[url] = FetchResult(
            status_code=200, content=content, etag=etag, last_modified=last_modified
        )

    async def fetch(self, url, etag=None, last_modified=None):
        self.calls.append((url, etag, last_modified))
        response = self.responses.get(url)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if response is None:
            raise TransportError(f"HTTP 404 fetching {url}")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
async def store():
    store = await FeedStore.open(":memory:")
    yield store
    await store.close()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
async def manager(store, fetcher):
    manager = FeedManager(store, fetcher=fetcher, options=ManagerOptions(refresh_timeout=5))
    await manager.init()
    yield manager
    manager.reset()
