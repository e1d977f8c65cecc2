"""@rss mention processor.

Detects @rss / @news / @rss:<category> / @feed:<feed> triggers in an outgoing
chat message and appends a context block of recent articles from the managed
feeds. The original message text is never modified, only extended.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.models.schemas import Article
from feed_context.services.feed_manager import FeedManager
from feed_context.services.formatting import format_article_block

CONTEXT_WINDOW_HOURS = 24
CONTEXT_ARTICLE_LIMIT = 30
SUGGESTED_FEED_LIMIT = 5
ARTICLE_SEPARATOR = "\n---\n"

# An "@" glued to a word character is an e-mail address, not a mention
_MENTION_RE = re.compile(
    r"(?<!\w)@(?:(?P<feed>feed):(?P<feed_name>\S+)|(?P<rss>rss)(?::(?P<category>\w+))?\b|(?P<news>news)\b)",
    re.IGNORECASE,
)
_TRAILING_PUNCTUATION = ".,;:!?)]}'\""

NOT_CONFIGURED_NOTICE = (
    "> RSS feeds are not configured. Add a feed before using @rss mentions."
)


@dataclass
class MentionRequest:
    """What a message asked for."""

    found: bool = False
    category_filter: Optional[str] = None
    feed_filter: Optional[str] = None


@dataclass
class MentionContext:
    """Structured view of the context block that was injected."""

    articles: List[Article]
    feed_count: int
    unread_count: int
    time_range: Tuple[datetime, datetime]
    category_filter: Optional[str] = None
    feed_filter: Optional[str] = None


@dataclass
class MentionResult:
    enriched_message: str
    context: Optional[MentionContext] = None
    has_mention: bool = False


@dataclass
class MentionSuggestion:
    label: str
    description: str
    icon: str = field(default="")


def has_mention(text: str) -> bool:
    """True if ``text`` contains @rss, @news, @rss:<category> or @feed:<feed>."""
    return bool(text) and _MENTION_RE.search(text) is not None


def parse_mentions(text: str) -> MentionRequest:
    """Scan a message for mentions and extract filters.

    Filters are lower-cased. When a message names several categories (or several
    feeds), the last one in the text wins.
    """
    request = MentionRequest()
    if not text:
        return request

    for match in _MENTION_RE.finditer(text):
        request.found = True
        if match.group("feed"):
            name = match.group("feed_name").rstrip(_TRAILING_PUNCTUATION).lower()
            if name:
                request.feed_filter = name
        elif match.group("category"):
            request.category_filter = match.group("category").lower()

    return request


class MentionProcessor:
    """Turns mentions into article context using a FeedManager."""

    def __init__(self, manager: FeedManager):
        self.manager = manager
        self.logger = UnifiedLogger.get_logger(__name__)

    async def process(self, text: str, now: Optional[datetime] = None) -> MentionResult:
        """Append recent-article context for any mention in ``text``.

        Never raises: every failure ends up as a notice appended to the message.

        Args:
            text: Outgoing chat message
            now: Reference time for the 24 hour window (defaults to current UTC time)

        Returns:
            MentionResult whose enriched_message starts with the unmodified ``text``
        """
        request = parse_mentions(text)
        if not request.found:
            return MentionResult(enriched_message=text, context=None, has_mention=False)

        try:
            return await self._build(text, request, now or datetime.now(timezone.utc))
        except Exception as e:
            self.logger.error(f"Failed to build RSS context: {e}", exc_info=True)
            return _notice(text, f"> Unable to load RSS context: {e}")

    async def _build(self, text: str, request: MentionRequest, now: datetime) -> MentionResult:
        feeds = self.manager.get_managed_feeds()
        if not feeds:
            return _notice(text, NOT_CONFIGURED_NOTICE)

        feed_ids: Optional[List[str]] = None

        if request.feed_filter:
            wanted = request.feed_filter
            feed = next(
                (f for f in feeds if wanted in f.title.lower() or f.id.lower() == wanted),
                None,
            )
            if feed is None:
                return _notice(text, f'> Feed "{wanted}" not found.')
            feed_ids = [feed.id]
        elif request.category_filter:
            wanted = request.category_filter
            category = next(
                (
                    c
                    for c in self.manager.get_categories()
                    if wanted in c.name.lower() or c.id.lower() == wanted
                ),
                None,
            )
            if category is None:
                return _notice(text, f'> Category "{wanted}" not found.')
            feed_ids = [f.id for f in feeds if f.category_id == category.id]

        articles = await self.manager.get_recent_articles(
            hours=CONTEXT_WINDOW_HOURS,
            limit=CONTEXT_ARTICLE_LIMIT,
            feed_ids=feed_ids,
        )

        if not articles:
            return _notice(text, f"> No recent articles in the past {CONTEXT_WINDOW_HOURS} hours.")

        titles = {f.id: f.title for f in feeds}
        blocks = ARTICLE_SEPARATOR.join(
            format_article_block(article, titles.get(article.feed_id), now)
            for article in articles
        )

        header_lines = [
            f"**Feeds:** {len(feeds)} configured · **Articles:** {len(articles)} "
            f"from the past {CONTEXT_WINDOW_HOURS} hours"
        ]
        if request.category_filter:
            header_lines.append(f"**Category:** {request.category_filter}")
        if request.feed_filter:
            header_lines.append(f"**Feed:** {request.feed_filter}")

        context_block = (
            "\n---\n"
            "## RSS Feed Context\n\n"
            + "\n".join(header_lines)
            + "\n\n"
            + blocks
            + "---\n"
        )

        self.logger.info(f"Injected {len(articles)} articles from {len(feeds)} feeds")
        return MentionResult(
            enriched_message=text + context_block,
            context=MentionContext(
                articles=articles,
                feed_count=len(feeds),
                unread_count=sum(1 for a in articles if not a.is_read),
                time_range=(now - timedelta(hours=CONTEXT_WINDOW_HOURS), now),
                category_filter=request.category_filter,
                feed_filter=request.feed_filter,
            ),
            has_mention=True,
        )

    async def get_mention_suggestions(self) -> List[MentionSuggestion]:
        """Autocomplete entries: the bare triggers, each category, the first feeds."""
        suggestions = [
            MentionSuggestion(label="@rss", description="All RSS feeds", icon="📡"),
            MentionSuggestion(label="@news", description="Alias for @rss", icon="📰"),
        ]

        for category in self.manager.get_categories():
            suggestions.append(MentionSuggestion(
                label=f"@rss:{category.name.lower()}",
                description=f"{category.feed_count} feeds in {category.name}",
                icon="📁",
            ))

        for feed in self.manager.get_managed_feeds()[:SUGGESTED_FEED_LIMIT]:
            suggestions.append(MentionSuggestion(
                label=f"@feed:{feed.id}",
                description=feed.title,
                icon=feed.icon_url or "🔗",
            ))

        return suggestions


def _notice(text: str, notice: str) -> MentionResult:
    return MentionResult(enriched_message=f"{text}\n\n{notice}", context=None, has_mention=True)
