"""Feed manager.

Owns an in-memory mirror of feeds and categories and orchestrates
fetch -> parse -> dedup -> persist for every refresh.

The mirror is write-through: each mutation writes the store first and then the
cache, all under one asyncio.Lock. ``init()`` reloads everything from the store.
Writes that go straight to the store without passing through the manager are not
seen until the next ``init()``.
"""

import asyncio
import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, List, Optional, Sequence, Set, Union
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from feed_context.config import ServerConfig
from feed_context.errors import (
    DuplicateResourceError,
    FeedContextError,
    InvalidInputError,
    NotFoundError,
    TransportError,
)
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import (
    Article,
    Category,
    Feed,
    FeedStatus,
    ParsedFeed,
    ParsedItem,
)
from feed_context.services.feed_parser import parse_feed
from feed_context.services.fetcher import FeedFetcher
from feed_context.storage.database import FeedStore

RefreshResult = Union[int, Exception]

# Fields callers may not change through update_feed()
_IMMUTABLE_FEED_FIELDS = {"id", "url", "created_at", "updated_at"}


@dataclass
class ManagerOptions:
    """Tunables for the feed manager."""

    refresh_interval: float = 30  # minutes
    retention_days: int = 30
    max_articles_per_feed: int = 100
    refresh_timeout: float = 15.0  # seconds, per feed
    max_concurrent_refreshes: int = 8
    cleanup_interval: float = 24  # hours

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ManagerOptions":
        return cls(
            refresh_interval=config.refresh_interval_minutes,
            retention_days=config.retention_days,
            max_articles_per_feed=config.max_articles_per_feed,
            refresh_timeout=config.refresh_timeout_seconds,
            max_concurrent_refreshes=config.max_concurrent_refreshes,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return str(uuid.uuid4())


class FeedManager:
    """Tracks subscribed feeds and keeps their articles in the store."""

    def __init__(
        self,
        store: FeedStore,
        fetcher: Optional[FeedFetcher] = None,
        parser: Optional[Callable[[str], ParsedFeed]] = None,
        options: Optional[ManagerOptions] = None,
    ):
        self.store = store
        self.fetcher = fetcher or FeedFetcher()
        self.parser = parser or parse_feed
        self.options = options or ManagerOptions()
        self.logger = UnifiedLogger.get_logger(__name__)

        self._feeds: Dict[str, Feed] = {}
        self._categories: Dict[str, Category] = {}
        self._lock = asyncio.Lock()
        self._refresh_timer: Optional[asyncio.Task] = None
        self._cleanup_timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    async def init(self) -> None:
        """Load feeds and categories from the store, replacing the cache."""
        await self.load_feeds()
        await self.load_categories()

    def reset(self) -> None:
        """Stop scheduled work and drop the cache."""
        self.stop_auto_refresh()
        self._feeds.clear()
        self._categories.clear()

    async def close(self) -> None:
        """Stop timers, wait for scheduled refreshes still running, close the store."""
        self.stop_auto_refresh()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self.reset()
        await self.store.close()

    # Feeds

    async def load_feeds(self) -> List[Feed]:
        feeds = await self.store.get_feeds()
        async with self._lock:
            self._feeds = {feed.id: feed for feed in feeds}
            self._recount_categories()
        return feeds

    def get_managed_feeds(self) -> List[Feed]:
        return list(self._feeds.values())

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        return self._feeds.get(feed_id)

    async def add_feed(
        self,
        url: str,
        category_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> Feed:
        """Subscribe to a feed.

        The feed is fetched and parsed first; if that fails nothing is created.
        Once stored, one refresh pulls the initial articles. A failure of that
        refresh leaves the feed in place (status error) and is re-raised.

        Args:
            url: Feed URL, compared to existing feeds by exact string match
            category_id: Optional category to file the feed under
            tags: Optional free-form tags

        Returns:
            The stored feed

        Raises:
            InvalidInputError: If the URL is malformed
            DuplicateResourceError: If a feed with this exact URL exists
            TransportError, ParseError, StoreError: If fetching, parsing or storing fails
        """
        _validate_url(url)

        if any(feed.url == url for feed in self._feeds.values()):
            raise DuplicateResourceError(f"Feed already exists: {url}")

        self.logger.info(f"Adding feed: {url}")
        result = await self.fetcher.fetch(url)
        if result.not_modified:
            raise TransportError(f"Unexpected 304 Not Modified for new feed {url}")
        parsed = self.parser(result.content)

        now = _utcnow()
        feed = Feed(
            id=_generate_id(),
            url=url,
            title=parsed.title,
            description=parsed.description,
            site_url=parsed.link,
            icon_url=parsed.icon or _favicon_url(url),
            category_id=category_id,
            tags=list(tags or []),
            status=FeedStatus.ACTIVE,
            last_fetched_at=now,
            created_at=now,
            updated_at=now,
        )

        async with self._lock:
            if any(existing.url == url for existing in self._feeds.values()):
                raise DuplicateResourceError(f"Feed already exists: {url}")
            await self.store.create_feed(feed)
            self._feeds[feed.id] = feed
            self._recount_categories()

        self.logger.info(f"Added feed '{feed.title}' ({feed.id})")

        await self.refresh_feed(feed.id)
        return self._feeds.get(feed.id, feed)

    async def remove_feed(self, feed_id: str) -> None:
        """Delete a feed and its articles. Removing an unknown id is a no-op."""
        async with self._lock:
            deleted = await self.store.delete_feed(feed_id)
            self._feeds.pop(feed_id, None)
            self._recount_categories()
        self.logger.info(f"Removed feed {feed_id} ({deleted} articles)")

    async def update_feed(self, feed_id: str, **changes) -> Feed:
        """Apply field changes to a feed and persist them.

        Raises:
            NotFoundError: If the feed is not managed
            InvalidInputError: For unknown or immutable fields
        """
        allowed = {f.name for f in dataclasses.fields(Feed)} - _IMMUTABLE_FEED_FIELDS
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidInputError(f"Cannot update feed fields: {', '.join(sorted(unknown))}")
        if "status" in changes:
            try:
                changes["status"] = FeedStatus(changes["status"])
            except ValueError as e:
                raise InvalidInputError(f"Invalid feed status: {changes['status']}") from e

        async with self._lock:
            return await self._apply_update(feed_id, lambda _feed: changes)

    async def _apply_update(self, feed_id: str, compute: Callable[[Feed], dict]) -> Feed:
        # Caller holds self._lock. ``compute`` sees the current cached feed so
        # counter increments never work from a stale snapshot.
        current = self._feeds.get(feed_id)
        if current is None:
            raise NotFoundError(f"Feed '{feed_id}' not found")

        updated = dataclasses.replace(current, **compute(current), updated_at=_utcnow())
        await self.store.update_feed(updated)
        self._feeds[feed_id] = updated
        self._recount_categories()
        return updated

    async def refresh_feed(self, feed_id: str) -> int:
        """Fetch a feed and store any new articles.

        Returns:
            Number of new articles (0 when the server answered 304)

        Raises:
            NotFoundError: If the feed is not managed
            TransportError, ParseError, StoreError: After recording the failure on the feed
        """
        feed = self._feeds.get(feed_id)
        if feed is None:
            raise NotFoundError(f"Feed '{feed_id}' not found")

        try:
            return await asyncio.wait_for(
                self._refresh(feed), timeout=self.options.refresh_timeout
            )
        except NotFoundError:
            raise
        except Exception as e:
            error = e
            if isinstance(e, asyncio.TimeoutError):
                error = TransportError(
                    f"Refresh of {feed.url} timed out after {self.options.refresh_timeout}s"
                )
            self.logger.error(f"Error refreshing feed {feed.url}: {error}")
            await self._record_failure(feed_id, error)
            if error is e:
                raise
            raise error from e

    async def _refresh(self, feed: Feed) -> int:
        result = await self.fetcher.fetch(feed.url, feed.etag, feed.last_modified)
        if result.not_modified:
            self.logger.info(f"Feed unchanged: {feed.url}")
            return 0

        parsed = self.parser(result.content)

        # Items past the cap are dropped for this cycle
        fetched_at = _utcnow()
        articles = [
            _item_to_article(item, feed.id, fetched_at)
            for item in parsed.items[: self.options.max_articles_per_feed]
        ]

        new_count = await self.store.upsert_articles(articles)

        async with self._lock:
            await self._apply_update(
                feed.id,
                lambda current: {
                    "status": FeedStatus.ACTIVE,
                    "error_message": None,
                    "last_fetched_at": fetched_at,
                    "etag": result.etag,
                    "last_modified": result.last_modified,
                    "article_count": current.article_count + new_count,
                    "unread_count": current.unread_count + new_count,
                },
            )

        self.logger.info(f"Refreshed {feed.url}: {new_count} new of {len(articles)} articles")
        return new_count

    async def _record_failure(self, feed_id: str, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        try:
            async with self._lock:
                await self._apply_update(
                    feed_id,
                    lambda _feed: {"status": FeedStatus.ERROR, "error_message": message},
                )
        except FeedContextError as e:
            # The original error is the one the caller needs to see
            self.logger.error(f"Could not record failure on feed {feed_id}: {e}")

    async def refresh_all_feeds(self) -> Dict[str, RefreshResult]:
        """Refresh every feed that is not paused.

        Feeds are refreshed concurrently (at most ``max_concurrent_refreshes`` at a
        time). A failing feed never affects the others.

        Returns:
            Mapping of feed id to new-article count, or the exception it raised
        """
        feed_ids = [f.id for f in self._feeds.values() if f.status != FeedStatus.PAUSED]
        semaphore = asyncio.Semaphore(max(1, self.options.max_concurrent_refreshes))
        results: Dict[str, RefreshResult] = {}

        async def refresh_one(feed_id: str) -> None:
            async with semaphore:
                try:
                    results[feed_id] = await self.refresh_feed(feed_id)
                except Exception as e:
                    results[feed_id] = e

        await asyncio.gather(*(refresh_one(feed_id) for feed_id in feed_ids))

        failures = sum(1 for r in results.values() if isinstance(r, Exception))
        self.logger.info(f"Refreshed {len(results)} feeds ({failures} failed)")
        return results

    # Categories

    async def load_categories(self) -> List[Category]:
        categories = await self.store.get_categories()
        async with self._lock:
            self._categories = {category.id: category for category in categories}
            self._recount_categories()
        return categories

    def get_categories(self) -> List[Category]:
        return list(self._categories.values())

    async def create_category(self, name: str, color: Optional[str] = None) -> Category:
        if not name or not name.strip():
            raise InvalidInputError("Category name must not be empty")

        category = Category(
            id=_generate_id(),
            name=name.strip(),
            color=color or None,
            feed_count=0,
            created_at=_utcnow(),
        )

        async with self._lock:
            await self.store.create_category(category)
            self._categories[category.id] = category
            self._recount_categories()
        return category

    async def delete_category(self, category_id: str) -> None:
        """Delete a category. Feeds filed under it keep their category_id."""
        async with self._lock:
            await self.store.delete_category(category_id)
            self._categories.pop(category_id, None)

    def _recount_categories(self) -> None:
        counts: Dict[str, int] = {}
        for feed in self._feeds.values():
            if feed.category_id:
                counts[feed.category_id] = counts.get(feed.category_id, 0) + 1
        for category in self._categories.values():
            category.feed_count = counts.get(category.id, 0)

    # Articles

    async def get_articles(self, feed_id: str, limit: Optional[int] = None) -> List[Article]:
        return await self.store.get_articles_for_feed(
            feed_id, limit or self.options.max_articles_per_feed
        )

    async def get_recent_articles(
        self,
        hours: float = 24,
        limit: int = 50,
        feed_ids: Optional[Sequence[str]] = None,
    ) -> List[Article]:
        """Articles published in the last ``hours``, newest first (ties by id).

        Args:
            hours: Time window
            limit: Maximum number of articles
            feed_ids: Restrict to these feeds; an empty sequence returns nothing
        """
        return await self.store.get_recent_articles(
            hours, limit, list(feed_ids) if feed_ids is not None else None
        )

    async def search_articles(self, query: str, limit: int = 50) -> List[Article]:
        return await self.store.search_articles(query, limit)

    async def mark_as_read(self, article_id: str, feed_id: Optional[str] = None) -> None:
        if await self.store.mark_article_read(article_id, True, feed_id) == 0:
            raise NotFoundError(f"Article '{article_id}' not found")

    async def mark_as_unread(self, article_id: str, feed_id: Optional[str] = None) -> None:
        if await self.store.mark_article_read(article_id, False, feed_id) == 0:
            raise NotFoundError(f"Article '{article_id}' not found")

    async def toggle_starred(self, article_id: str, feed_id: Optional[str] = None) -> bool:
        return await self.store.toggle_article_starred(article_id, feed_id)

    async def get_starred_articles(self, limit: int = 100) -> List[Article]:
        return await self.store.get_starred_articles(limit)

    async def cleanup_old_articles(self) -> int:
        """Purge unstarred articles older than the retention window."""
        return await self.store.delete_old_articles(self.options.retention_days)

    # Auto-refresh

    @property
    def auto_refresh_running(self) -> bool:
        return self._refresh_timer is not None

    def start_auto_refresh(self) -> None:
        """Schedule periodic refreshes and the cleanup sweep. Calling twice is a no-op.

        Must be called from inside a running event loop.
        """
        if self._refresh_timer is not None:
            return

        loop = asyncio.get_running_loop()
        self._refresh_timer = loop.create_task(
            self._run_every(self.options.refresh_interval * 60, self.refresh_all_feeds)
        )
        self._cleanup_timer = loop.create_task(
            self._run_every(self.options.cleanup_interval * 3600, self.cleanup_old_articles)
        )
        self.logger.info(
            f"Auto-refresh started: every {self.options.refresh_interval} minutes, "
            f"cleanup every {self.options.cleanup_interval} hours"
        )

    def stop_auto_refresh(self) -> None:
        """Cancel the timers. A refresh that already started runs to completion."""
        for timer in (self._refresh_timer, self._cleanup_timer):
            if timer is not None:
                timer.cancel()
        if self._refresh_timer is not None:
            self.logger.info("Auto-refresh stopped")
        self._refresh_timer = None
        self._cleanup_timer = None

    async def _run_every(self, seconds: float, job: Callable) -> None:
        while True:
            await asyncio.sleep(seconds)
            # Run the job as its own task so cancelling the timer leaves it alone
            task = asyncio.ensure_future(self._run_job(job))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run_job(self, job: Callable) -> None:
        try:
            await job()
        except Exception as e:
            name = getattr(job, "__name__", repr(job))
            self.logger.error(f"Scheduled {name} failed: {e}", exc_info=True)


# Helpers


def _validate_url(url: str) -> None:
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidInputError(f"Invalid URL format: {url}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInputError(f"Invalid URL format: {url}")


def _favicon_url(feed_url: str) -> Optional[str]:
    parsed = urlparse(feed_url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}/favicon.ico"


def _item_to_article(item: ParsedItem, feed_id: str, fetched_at: datetime) -> Article:
    # Items without guid or link get a fresh id and are never deduplicated
    article_id = item.guid or item.link or _generate_id()

    return Article(
        id=article_id,
        feed_id=feed_id,
        title=item.title or "Untitled",
        link=item.link or "",
        content=item.content or item.description or "",
        author=item.author,
        image_url=_extract_image_url(item),
        enclosures=list(item.enclosures),
        published_at=_parse_published(item.pub_date) or fetched_at,
        fetched_at=fetched_at,
    )


def _parse_published(date_str: Optional[str]) -> Optional[datetime]:
    """Parse an item date string (RFC 2822, then ISO-8601) into UTC."""
    if not date_str:
        return None

    parsed = None
    try:
        parsed = parsedate_to_datetime(date_str)
    except (TypeError, ValueError, IndexError):
        pass

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _extract_image_url(item: ParsedItem) -> Optional[str]:
    content = item.content or item.description or ""
    if "<img" in content:
        img = BeautifulSoup(content, "lxml").find("img", src=True)
        if img:
            return img["src"]

    for enclosure in item.enclosures:
        if enclosure.media_type.startswith("image/"):
            return enclosure.url

    return None
