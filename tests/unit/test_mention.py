"""Unit tests for @rss mention detection and context injection."""

from unittest.mock import AsyncMock

import pytest

from conftest import hours_ago, rss_document, rss_item
from feed_context.errors import StoreError
from feed_context.services.mention import (
    NOT_CONFIGURED_NOTICE,
    MentionProcessor,
    has_mention,
    parse_mentions,
)


# Mark all tests as async
pytestmark = pytest.mark.anyio

TECH_URL = "https://tech.example.com/feed.xml"
SCIENCE_URL = "https://science.example.com/rss"


def tech_daily_document():
    return rss_document("Tech Daily", [
        rss_item("Chips get faster", "https://tech.example.com/1", guid="t-1",
                 published=hours_ago(1), description="<p>New silicon ships.</p>"),
        rss_item("Browsers get slower", "https://tech.example.com/2", guid="t-2",
                 published=hours_ago(3), description="Tabs keep multiplying."),
    ])


def science_document():
    return rss_document("Science Weekly", [
        rss_item("Comet spotted", "https://science.example.com/1", guid="s-1",
                 published=hours_ago(2)),
    ])


class TestHasMention:
    """Tests for mention detection."""

    @pytest.mark.parametrize("text", [
        "check @rss today",
        "@news",
        "@rss:tech",
        "@feed:hn",
        "What does @RSS say?",
        "(@news)",
    ])
    def test_detects_mentions(self, text):
        assert has_mention(text) is True

    @pytest.mark.parametrize("text", [
        "rss",
        "",
        "mail me at bob@news.org",
        "@rssfeeds are great",
        "@newsletter",
        "@feed:",
    ])
    def test_ignores_non_mentions(self, text):
        assert has_mention(text) is False

    def test_none_is_not_a_mention(self):
        assert has_mention(None) is False


class TestParseMentions:
    """Tests for filter extraction."""

    def test_plain_rss_has_no_filters(self):
        request = parse_mentions("Summarize @rss")

        assert request.found is True
        assert request.category_filter is None
        assert request.feed_filter is None

    def test_category_is_lowercased(self):
        assert parse_mentions("@rss:Tech news please").category_filter == "tech"

    def test_last_category_wins(self):
        request = parse_mentions("@rss:tech vs @rss:science")

        assert request.category_filter == "science"

    def test_feed_name_strips_trailing_punctuation(self):
        assert parse_mentions("what's new on @feed:HN?").feed_filter == "hn"
        assert parse_mentions("see @feed:tech-daily, thanks").feed_filter == "tech-daily"

    def test_news_alias(self):
        request = parse_mentions("any @news")

        assert request.found is True
        assert request.category_filter is None


class TestProcess:
    """Tests for context injection."""

    async def test_no_mention_returns_text_unchanged(self, manager):
        result = await MentionProcessor(manager).process("hello there")

        assert result.enriched_message == "hello there"
        assert result.has_mention is False
        assert result.context is None

    async def test_no_feeds_configured(self, manager):
        """Test the not-configured notice when no feeds exist."""
        result = await MentionProcessor(manager).process("Summarize @rss")

        assert result.has_mention is True
        assert result.context is None
        assert result.enriched_message.startswith("Summarize @rss")
        assert result.enriched_message.endswith(NOT_CONFIGURED_NOTICE)

    async def test_context_for_single_feed(self, manager, fetcher):
        """Test one feed with two fresh articles yields a header and two blocks."""
        fetcher.serve(TECH_URL, tech_daily_document())
        await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process("Summarize @rss")
        message = result.enriched_message

        assert message.startswith("Summarize @rss\n---\n## RSS Feed Context\n")
        assert "**Feeds:** 1 configured · **Articles:** 2 from the past 24 hours" in message
        assert message.count("### ") == 2
        assert "### Chips get faster" in message
        assert "**Source:** Tech Daily · 1 hour ago" in message
        assert "**Link:** https://tech.example.com/2" in message
        assert "New silicon ships." in message
        assert "<p>" not in message
        assert message.endswith("---\n")

        assert message.index("Chips get faster") < message.index("Browsers get slower")
        assert result.context.feed_count == 1
        assert len(result.context.articles) == 2
        assert result.context.unread_count == 2
        start, end = result.context.time_range
        assert (end - start).total_seconds() == 24 * 3600

    async def test_feed_filter(self, manager, fetcher):
        fetcher.serve(TECH_URL, tech_daily_document())
        fetcher.serve(SCIENCE_URL, science_document())
        await manager.add_feed(TECH_URL)
        await manager.add_feed(SCIENCE_URL)

        result = await MentionProcessor(manager).process("@feed:science what's up")

        assert [a.title for a in result.context.articles] == ["Comet spotted"]
        assert result.context.feed_filter == "science"
        assert "**Feed:** science" in result.enriched_message

    async def test_feed_filter_by_id(self, manager, fetcher):
        fetcher.serve(TECH_URL, tech_daily_document())
        feed = await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process(f"@feed:{feed.id}")

        assert len(result.context.articles) == 2

    async def test_unknown_feed(self, manager, fetcher):
        fetcher.serve(TECH_URL, tech_daily_document())
        await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process("@feed:sports")

        assert result.has_mention is True
        assert result.context is None
        assert result.enriched_message == '@feed:sports\n\n> Feed "sports" not found.'

    async def test_category_filter(self, manager, fetcher):
        tech = await manager.create_category("Tech")
        await manager.create_category("Science")
        fetcher.serve(TECH_URL, tech_daily_document())
        fetcher.serve(SCIENCE_URL, science_document())
        await manager.add_feed(TECH_URL, category_id=tech.id)
        await manager.add_feed(SCIENCE_URL)

        result = await MentionProcessor(manager).process("@rss:tech summary")

        assert {a.title for a in result.context.articles} == {
            "Chips get faster",
            "Browsers get slower",
        }
        assert result.context.category_filter == "tech"
        assert result.context.feed_count == 2

    async def test_unknown_category(self, manager, fetcher):
        fetcher.serve(TECH_URL, tech_daily_document())
        await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process("@rss:sports")

        assert result.enriched_message.endswith('> Category "sports" not found.')
        assert result.context is None

    async def test_category_without_feeds(self, manager, fetcher):
        await manager.create_category("Empty")
        fetcher.serve(TECH_URL, tech_daily_document())
        await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process("@rss:empty")

        assert result.enriched_message.endswith("> No recent articles in the past 24 hours.")

    async def test_feed_filter_beats_category(self, manager, fetcher):
        await manager.create_category("Tech")
        fetcher.serve(TECH_URL, tech_daily_document())
        fetcher.serve(SCIENCE_URL, science_document())
        await manager.add_feed(TECH_URL)
        await manager.add_feed(SCIENCE_URL)

        result = await MentionProcessor(manager).process("@rss:tech @feed:science")

        assert [a.title for a in result.context.articles] == ["Comet spotted"]

    async def test_no_recent_articles(self, manager, fetcher):
        fetcher.serve(TECH_URL, rss_document("Tech Daily", [
            rss_item("Old news", "https://tech.example.com/old", published=hours_ago(48)),
        ]))
        await manager.add_feed(TECH_URL)

        result = await MentionProcessor(manager).process("@news")

        assert result.enriched_message == "@news\n\n> No recent articles in the past 24 hours."
        assert result.has_mention is True

    async def test_failure_becomes_notice(self, manager, fetcher):
        """Test that store failures never escape process()."""
        fetcher.serve(TECH_URL, tech_daily_document())
        await manager.add_feed(TECH_URL)
        manager.get_recent_articles = AsyncMock(side_effect=StoreError("disk I/O error"))

        result = await MentionProcessor(manager).process("@rss")

        assert result.has_mention is True
        assert result.context is None
        assert result.enriched_message == "@rss\n\n> Unable to load RSS context: disk I/O error"


class TestSuggestions:
    """Tests for mention autocomplete."""

    async def test_base_suggestions(self, manager):
        suggestions = await MentionProcessor(manager).get_mention_suggestions()

        assert [s.label for s in suggestions] == ["@rss", "@news"]

    async def test_categories_and_feeds(self, manager, fetcher):
        tech = await manager.create_category("Tech")
        fetcher.serve(TECH_URL, tech_daily_document())
        feed = await manager.add_feed(TECH_URL, category_id=tech.id)

        suggestions = await MentionProcessor(manager).get_mention_suggestions()
        by_label = {s.label: s for s in suggestions}

        assert by_label["@rss:tech"].description == "1 feeds in Tech"
        assert by_label[f"@feed:{feed.id}"].description == "Tech Daily"

    async def test_feed_suggestions_are_limited(self, manager, fetcher):
        for i in range(7):
            url = f"https://site{i}.example.com/feed.xml"
            fetcher.serve(url, rss_document(f"Site {i}"))
            await manager.add_feed(url)

        suggestions = await MentionProcessor(manager).get_mention_suggestions()

        assert len([s for s in suggestions if s.label.startswith("@feed:")]) == 5
