"""Data models for feed_context."""

from .schemas import (
    NOT_MODIFIED,
    Article,
    Category,
    Enclosure,
    Feed,
    FeedStatus,
    FetchResult,
    ParsedFeed,
    ParsedItem,
)

__all__ = [
    "NOT_MODIFIED",
    "Article",
    "Category",
    "Enclosure",
    "Feed",
    "FeedStatus",
    "FetchResult",
    "ParsedFeed",
    "ParsedItem",
]
