"""Data models for feed_context.

This module defines the core data structures for feeds, categories and articles,
plus the intermediate results produced by the fetcher and parser.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


NOT_MODIFIED = 304


class FeedStatus(str, Enum):
    """Refresh state of a feed."""

    ACTIVE = "active"
    ERROR = "error"
    PAUSED = "paused"


@dataclass
class Enclosure:
    """Media attached to an item (podcast audio, video, image)."""

    url: str
    media_type: str = ""
    length: Optional[int] = None


@dataclass
class Feed:
    """Represents a subscribed RSS/Atom feed."""

    id: str
    url: str
    title: str
    description: Optional[str] = None
    site_url: Optional[str] = None
    icon_url: Optional[str] = None
    category_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    status: FeedStatus = FeedStatus.ACTIVE
    error_message: Optional[str] = None
    last_fetched_at: Optional[datetime] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    article_count: int = 0
    unread_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Category:
    """A named grouping of feeds."""

    id: str
    name: str
    color: Optional[str] = None
    feed_count: int = 0
    created_at: Optional[datetime] = None


@dataclass
class Article:
    """Represents a single item ingested from a feed."""

    id: str
    feed_id: str
    title: str
    link: str
    content: str
    published_at: datetime
    fetched_at: datetime
    summary: Optional[str] = None
    author: Optional[str] = None
    image_url: Optional[str] = None
    enclosures: List[Enclosure] = field(default_factory=list)
    is_read: bool = False
    is_starred: bool = False
    topics: Optional[List[str]] = None


@dataclass
class FetchResult:
    """Raw response of a conditional feed fetch."""

    status_code: int
    content: str = ""
    content_type: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def not_modified(self) -> bool:
        return self.status_code == NOT_MODIFIED


@dataclass
class ParsedItem:
    """Represents a parsed item from a feed, before it becomes an Article."""

    title: Optional[str] = None
    link: Optional[str] = None
    guid: Optional[str] = None
    author: Optional[str] = None
    content: Optional[str] = None
    description: Optional[str] = None
    pub_date: Optional[str] = None
    enclosures: List[Enclosure] = field(default_factory=list)


@dataclass
class ParsedFeed:
    """Feed-level metadata plus the items in document order."""

    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    icon: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)
