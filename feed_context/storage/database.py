"""Database storage for feed_context.

This module provides async SQLite operations for feeds, categories and articles.
Database location: ~/.feed_context/feed_context.db (or FEED_CONTEXT_DB_PATH env var)

The store is the durable source of truth. Article ids are unique per feed, and
inserting an article whose id already exists for that feed is a no-op: content
changes upstream never overwrite a stored article.
"""

import asyncio
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Union

import aiosqlite

from feed_context.errors import DuplicateResourceError, NotFoundError, StoreError
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import Article, Category, Enclosure, Feed, FeedStatus


def _get_db_path() -> Path:
    """Get the database path, respecting FEED_CONTEXT_DB_PATH env var for testing."""
    env_path = os.environ.get("FEED_CONTEXT_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path.home() / ".feed_context" / "feed_context.db"


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC ISO-8601 string.

    Naive datetimes are taken to be UTC. The fixed width keeps lexical
    ordering in SQL identical to chronological ordering.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


ARTICLE_COLUMNS = """
    id, feed_id, title, link, content, summary, author, image_url, enclosures,
    published_at, fetched_at, is_read, is_starred, topics
"""


class FeedStore:
    """Async SQLite store for feeds, categories and articles."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        # All feed refreshes share this connection; one writer at a time keeps
        # each batch in its own transaction.
        self._write_lock = asyncio.Lock()
        self.logger = UnifiedLogger.get_logger(__name__)

    @classmethod
    async def open(cls, path: Union[str, Path, None] = None) -> "FeedStore":
        """Open (or create) the database and initialize its schema.

        Args:
            path: Database file, ``":memory:"`` for tests; defaults to _get_db_path()

        Returns:
            Ready-to-use FeedStore
        """
        if path is None:
            path = _get_db_path()
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            db = await aiosqlite.connect(path)
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to open database at {path}: {e}") from e
        db.row_factory = aiosqlite.Row

        store = cls(db)
        await store.init_database()
        return store

    async def close(self) -> None:
        await self.db.close()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run writes as one unit: commit on success, roll back on any error or cancellation."""
        async with self._write_lock:
            try:
                yield self.db
                await self.db.commit()
            except BaseException:
                await self.db.rollback()
                raise

    async def init_database(self) -> None:
        """Create tables and indexes if they don't exist."""
        await self.db.execute("PRAGMA foreign_keys = ON")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS feeds (
                id TEXT PRIMARY KEY,
                url TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                description TEXT,
                site_url TEXT,
                icon_url TEXT,
                category_id TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'active',
                error_message TEXT,
                last_fetched_at TEXT,
                etag TEXT,
                last_modified TEXT,
                article_count INTEGER NOT NULL DEFAULT 0,
                unread_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                color TEXT,
                created_at TEXT NOT NULL
            )
        """)

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT NOT NULL,
                feed_id TEXT NOT NULL,
                title TEXT NOT NULL,
                link TEXT NOT NULL,
                content TEXT NOT NULL DEFAULT '',
                summary TEXT,
                author TEXT,
                image_url TEXT,
                enclosures TEXT,
                published_at TEXT NOT NULL,
                fetched_at TEXT NOT NULL,
                is_read BOOLEAN NOT NULL DEFAULT FALSE,
                is_starred BOOLEAN NOT NULL DEFAULT FALSE,
                topics TEXT,
                PRIMARY KEY (feed_id, id),
                FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
            )
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_articles_published ON articles(published_at DESC)
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_articles_unread ON articles(feed_id, is_read)
        """)

        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_articles_starred ON articles(is_starred)
        """)

        await self.db.commit()

    # Feeds

    async def create_feed(self, feed: Feed) -> None:
        """Insert a new feed.

        Raises:
            DuplicateResourceError: If a feed with the same id or URL already exists
            StoreError: On any other database failure
        """
        try:
            async with self._transaction() as db:
                await db.execute(
                    """
                    INSERT INTO feeds (id, url, title, description, site_url, icon_url,
                                       category_id, tags, status, error_message, last_fetched_at,
                                       etag, last_modified, article_count, unread_count,
                                       created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        feed.id,
                        feed.url,
                        feed.title,
                        feed.description,
                        feed.site_url,
                        feed.icon_url,
                        feed.category_id,
                        json.dumps(list(feed.tags)),
                        FeedStatus(feed.status).value,
                        feed.error_message,
                        to_db_time(feed.last_fetched_at),
                        feed.etag,
                        feed.last_modified,
                        feed.article_count,
                        feed.unread_count,
                        to_db_time(feed.created_at),
                        to_db_time(feed.updated_at),
                    ),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateResourceError(
                f"Feed with id '{feed.id}' or URL '{feed.url}' already exists"
            ) from e
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to create feed: {e}") from e

    async def get_feeds(self) -> List[Feed]:
        """List all feeds ordered by title."""
        try:
            cursor = await self.db.execute("SELECT * FROM feeds ORDER BY title, id")
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to load feeds: {e}") from e
        return [_row_to_feed(row) for row in rows]

    async def get_feed(self, feed_id: str) -> Optional[Feed]:
        try:
            cursor = await self.db.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,))
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to load feed {feed_id}: {e}") from e
        return _row_to_feed(row) if row else None

    async def update_feed(self, feed: Feed) -> None:
        """Persist every mutable field of a feed.

        Raises:
            NotFoundError: If no feed has this id
        """
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    """
                    UPDATE feeds SET
                        title = ?, description = ?, site_url = ?, icon_url = ?,
                        category_id = ?, tags = ?, status = ?, error_message = ?,
                        last_fetched_at = ?, etag = ?, last_modified = ?,
                        article_count = ?, unread_count = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        feed.title,
                        feed.description,
                        feed.site_url,
                        feed.icon_url,
                        feed.category_id,
                        json.dumps(list(feed.tags)),
                        FeedStatus(feed.status).value,
                        feed.error_message,
                        to_db_time(feed.last_fetched_at),
                        feed.etag,
                        feed.last_modified,
                        feed.article_count,
                        feed.unread_count,
                        to_db_time(feed.updated_at),
                        feed.id,
                    ),
                )
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to update feed {feed.id}: {e}") from e

        if cursor.rowcount == 0:
            raise NotFoundError(f"Feed '{feed.id}' not found")

    async def delete_feed(self, feed_id: str) -> int:
        """Delete a feed and all its articles.

        Returns:
            Number of articles deleted (0 when the feed did not exist)
        """
        try:
            async with self._transaction() as db:
                cursor = await db.execute("DELETE FROM articles WHERE feed_id = ?", (feed_id,))
                article_count = cursor.rowcount
                await db.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to delete feed {feed_id}: {e}") from e

        return article_count

    # Categories

    async def create_category(self, category: Category) -> None:
        try:
            async with self._transaction() as db:
                await db.execute(
                    "INSERT INTO categories (id, name, color, created_at) VALUES (?, ?, ?, ?)",
                    (category.id, category.name, category.color, to_db_time(category.created_at)),
                )
        except aiosqlite.IntegrityError as e:
            raise DuplicateResourceError(f"Category with id '{category.id}' already exists") from e
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to create category: {e}") from e

    async def get_categories(self) -> List[Category]:
        """List all categories with the number of feeds referencing each."""
        try:
            cursor = await self.db.execute("""
                SELECT c.*,
                       (SELECT COUNT(*) FROM feeds f WHERE f.category_id = c.id) AS feed_count
                FROM categories c
                ORDER BY c.name, c.id
            """)
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to load categories: {e}") from e

        return [
            Category(
                id=row["id"],
                name=row["name"],
                color=row["color"],
                feed_count=row["feed_count"],
                created_at=from_db_time(row["created_at"]),
            )
            for row in rows
        ]

    async def delete_category(self, category_id: str) -> bool:
        """Delete a category. Feeds keep their (now dangling) category_id."""
        try:
            async with self._transaction() as db:
                cursor = await db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to delete category {category_id}: {e}") from e
        return cursor.rowcount > 0

    # Articles

    async def upsert_articles(self, articles: Sequence[Article]) -> int:
        """Insert articles, skipping any (feed_id, id) that is already stored.

        The batch is atomic: if any row is rejected nothing from this call is
        kept, and batches from concurrent callers never share a transaction.

        Args:
            articles: Articles to store; every feed_id must reference an existing feed

        Returns:
            Number of articles actually added (excludes duplicates)

        Raises:
            StoreError: If a feed_id does not exist or the write fails
        """
        if not articles:
            return 0

        rows = [
            (
                article.id,
                article.feed_id,
                article.title,
                article.link,
                article.content,
                article.summary,
                article.author,
                article.image_url,
                _dump_enclosures(article.enclosures),
                to_db_time(article.published_at),
                to_db_time(article.fetched_at),
                article.is_read,
                article.is_starred,
                json.dumps(article.topics) if article.topics is not None else None,
            )
            for article in articles
        ]

        try:
            async with self._transaction() as db:
                # rowcount of executemany sums the rows actually inserted
                cursor = await db.executemany(
                    f"""
                    INSERT OR IGNORE INTO articles ({ARTICLE_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                added_count = cursor.rowcount
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to store articles: {e}") from e

        return added_count

    async def get_articles_for_feed(self, feed_id: str, limit: int = 100) -> List[Article]:
        return await self._query_articles(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE feed_id = ?
            ORDER BY published_at DESC, id ASC LIMIT ?
            """,
            [feed_id, limit],
        )

    async def get_recent_articles(
        self,
        hours: float,
        limit: int,
        feed_ids: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None,
    ) -> List[Article]:
        """List articles published within the last ``hours``, newest first.

        Ties on published_at are broken by article id so results are stable.

        Args:
            hours: Size of the time window
            limit: Maximum number of articles to return
            feed_ids: Optional feed subset; an empty sequence matches nothing
            now: Reference time (defaults to the current UTC time)
        """
        if feed_ids is not None and len(feed_ids) == 0:
            return []

        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=hours)

        query = f"SELECT {ARTICLE_COLUMNS} FROM articles WHERE published_at >= ?"
        params: List = [to_db_time(cutoff)]

        if feed_ids is not None:
            placeholders = ",".join("?" * len(feed_ids))
            query += f" AND feed_id IN ({placeholders})"
            params.extend(feed_ids)

        query += " ORDER BY published_at DESC, id ASC LIMIT ?"
        params.append(limit)

        return await self._query_articles(query, params)

    async def search_articles(self, query: str, limit: int = 50) -> List[Article]:
        """Case-insensitive substring search over article titles and content."""
        pattern = "%" + query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        return await self._query_articles(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE title LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\'
            ORDER BY published_at DESC, id ASC LIMIT ?
            """,
            [pattern, pattern, limit],
        )

    async def mark_article_read(
        self, article_id: str, is_read: bool = True, feed_id: Optional[str] = None
    ) -> int:
        """Set the read flag on an article.

        Without ``feed_id`` every article carrying this id is updated.

        Returns:
            Number of rows updated
        """
        query = "UPDATE articles SET is_read = ? WHERE id = ?"
        params: List = [is_read, article_id]
        if feed_id is not None:
            query += " AND feed_id = ?"
            params.append(feed_id)

        try:
            async with self._transaction() as db:
                cursor = await db.execute(query, params)
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to update article {article_id}: {e}") from e
        return cursor.rowcount

    async def toggle_article_starred(self, article_id: str, feed_id: Optional[str] = None) -> bool:
        """Flip the starred flag.

        Returns:
            The new starred state

        Raises:
            NotFoundError: If no article matches
        """
        where = "WHERE id = ?"
        params: List = [article_id]
        if feed_id is not None:
            where += " AND feed_id = ?"
            params.append(feed_id)

        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    f"UPDATE articles SET is_starred = NOT is_starred {where}", params
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Article '{article_id}' not found")

                cursor = await db.execute(
                    f"SELECT is_starred FROM articles {where} LIMIT 1", params
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to toggle star on article {article_id}: {e}") from e

        return bool(row["is_starred"])

    async def get_starred_articles(self, limit: int = 100) -> List[Article]:
        return await self._query_articles(
            f"""
            SELECT {ARTICLE_COLUMNS} FROM articles
            WHERE is_starred = 1
            ORDER BY published_at DESC, id ASC LIMIT ?
            """,
            [limit],
        )

    async def delete_old_articles(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete articles published more than ``days`` ago.

        Starred articles are kept regardless of age.

        Returns:
            Number of articles deleted
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=days)

        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    "DELETE FROM articles WHERE published_at < ? AND is_starred = 0",
                    (to_db_time(cutoff),),
                )
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to delete old articles: {e}") from e

        self.logger.info(f"Deleted {cursor.rowcount} articles older than {days} days")
        return cursor.rowcount

    async def _query_articles(self, query: str, params: Sequence) -> List[Article]:
        try:
            cursor = await self.db.execute(query, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"Failed to query articles: {e}") from e
        return [_row_to_article(row) for row in rows]


def _dump_enclosures(enclosures: Sequence[Enclosure]) -> Optional[str]:
    if not enclosures:
        return None
    return json.dumps([
        {"url": e.url, "media_type": e.media_type, "length": e.length} for e in enclosures
    ])


def _load_enclosures(raw: Optional[str]) -> List[Enclosure]:
    if not raw:
        return []
    return [
        Enclosure(url=e["url"], media_type=e.get("media_type", ""), length=e.get("length"))
        for e in json.loads(raw)
    ]


def _row_to_feed(row: aiosqlite.Row) -> Feed:
    return Feed(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        site_url=row["site_url"],
        icon_url=row["icon_url"],
        category_id=row["category_id"],
        tags=json.loads(row["tags"] or "[]"),
        status=FeedStatus(row["status"]),
        error_message=row["error_message"],
        last_fetched_at=from_db_time(row["last_fetched_at"]),
        etag=row["etag"],
        last_modified=row["last_modified"],
        article_count=row["article_count"],
        unread_count=row["unread_count"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


def _row_to_article(row: aiosqlite.Row) -> Article:
    return Article(
        id=row["id"],
        feed_id=row["feed_id"],
        title=row["title"],
        link=row["link"],
        content=row["content"] or "",
        summary=row["summary"],
        author=row["author"],
        image_url=row["image_url"],
        enclosures=_load_enclosures(row["enclosures"]),
        published_at=from_db_time(row["published_at"]),
        fetched_at=from_db_time(row["fetched_at"]),
        is_read=bool(row["is_read"]),
        is_starred=bool(row["is_starred"]),
        topics=json.loads(row["topics"]) if row["topics"] else None,
    )
