"""Text helpers for rendering articles into chat context."""

import re
from datetime import datetime, timezone
from typing import Optional

from feed_context.models.schemas import Article

PREVIEW_LENGTH = 500
UNKNOWN_SOURCE = "unknown"

_TAG_RE = re.compile(r"<[^>]*>")


def strip_markup(content: str) -> str:
    """Remove anything that looks like a tag. Entities are left as-is."""
    return _TAG_RE.sub("", content or "")


def truncate_content(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Strip markup and cut the text to ``max_length`` characters plus ``...``."""
    text = strip_markup(content)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def format_relative_time(published: datetime, now: Optional[datetime] = None) -> str:
    """Bucket the age of ``published`` into a human label.

    Examples:
        - 30 seconds ago -> "just now"
        - 5 minutes ago -> "5 minutes ago"
        - 3 hours ago -> "3 hours ago"
        - 2 days ago -> "2 days ago"
        - 10 days ago -> "2026-10-09"
    """
    now = now or datetime.now(timezone.utc)
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)

    minutes = int((now - published).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    if days < 7:
        return f"{days} day{'s' if days != 1 else ''} ago"
    return published.strftime("%Y-%m-%d")


def format_article_block(
    article: Article,
    feed_title: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Render one article as a markdown block for context injection."""
    source = feed_title or UNKNOWN_SOURCE
    published = format_relative_time(article.published_at, now)
    preview = truncate_content(article.content)

    return (
        f"### {article.title}\n"
        f"**Source:** {source} · {published}\n"
        f"**Link:** {article.link}\n"
        f"\n"
        f"{preview}\n"
    )
