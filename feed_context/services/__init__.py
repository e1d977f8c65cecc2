"""Services for feed_context."""

from .feed_manager import FeedManager, ManagerOptions
from .feed_parser import parse_feed
from .fetcher import FeedFetcher
from .mention import (
    MentionContext,
    MentionProcessor,
    MentionRequest,
    MentionResult,
    MentionSuggestion,
    has_mention,
    parse_mentions,
)

__all__ = [
    "FeedFetcher",
    "FeedManager",
    "ManagerOptions",
    "MentionContext",
    "MentionProcessor",
    "MentionRequest",
    "MentionResult",
    "MentionSuggestion",
    "has_mention",
    "parse_feed",
    "parse_mentions",
]
