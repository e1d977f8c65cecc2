"""Storage layer for feed_context."""

from .database import FeedStore, from_db_time, to_db_time

__all__ = [
    "FeedStore",
    "from_db_time",
    "to_db_time",
]
