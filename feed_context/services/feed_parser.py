"""Feed parser service.

This module turns raw RSS/Atom documents into ParsedFeed objects using feedparser.
"""

from typing import List, Optional

import feedparser

from feed_context.errors import ParseError
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import Enclosure, ParsedFeed, ParsedItem


def parse_feed(content: str) -> ParsedFeed:
    """Parse an RSS/Atom document.

    Items keep document order, which is not necessarily newest first.

    Args:
        content: Raw feed document

    Returns:
        ParsedFeed with feed metadata and items

    Raises:
        ParseError: If the content is not a recognizable feed
    """
    logger = UnifiedLogger.get_logger(__name__)

    feed = feedparser.parse(content)

    if feed.bozo and not feed.entries and not feed.feed.get("title"):
        logger.warning(f"Feed parsing error: {feed.get('bozo_exception')}")
        raise ParseError(f"Unable to parse feed: {feed.get('bozo_exception')}")

    if not feed.get("version") and not feed.entries:
        raise ParseError("Unknown feed format")

    meta = feed.feed
    items = [_parse_item(entry) for entry in feed.entries]

    logger.info(f"Parsed {len(items)} items from feed")
    return ParsedFeed(
        title=_clean(meta.get("title")) or "Untitled Feed",
        description=_clean(meta.get("subtitle")),
        link=_clean(meta.get("link")),
        icon=_feed_icon(meta),
        items=items,
    )


def _parse_item(entry) -> ParsedItem:
    content = None
    if entry.get("content"):
        content = _clean(entry["content"][0].get("value"))

    return ParsedItem(
        title=_clean(entry.get("title")),
        link=_clean(entry.get("link")),
        guid=_clean(entry.get("id")),
        author=_clean(entry.get("author")),
        content=content,
        description=_clean(entry.get("summary")),
        pub_date=_clean(entry.get("published") or entry.get("updated")),
        enclosures=_parse_enclosures(entry),
    )


def _parse_enclosures(entry) -> List[Enclosure]:
    enclosures = []
    for enclosure in entry.get("enclosures", []):
        url = enclosure.get("href") or enclosure.get("url")
        if not url:
            continue

        length = enclosure.get("length")
        try:
            length = int(length) if length else None
        except (TypeError, ValueError):
            length = None

        enclosures.append(Enclosure(url=url, media_type=enclosure.get("type", ""), length=length))
    return enclosures


def _feed_icon(meta) -> Optional[str]:
    image = meta.get("image")
    if image and image.get("href"):
        return image["href"]
    return _clean(meta.get("icon")) or _clean(meta.get("logo"))


def _clean(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    return value or None
