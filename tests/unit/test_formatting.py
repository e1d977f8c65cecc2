"""Unit tests for article rendering helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from feed_context.models.schemas import Article
from feed_context.services.formatting import (
    format_article_block,
    format_relative_time,
    strip_markup,
    truncate_content,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class TestTruncateContent:
    def test_strips_tags(self):
        assert strip_markup('<p>Hello <a href="/x">world</a></p>') == "Hello world"

    def test_short_text_is_untouched(self):
        assert truncate_content("<b>short</b>") == "short"

    def test_long_text_is_cut_with_ellipsis(self):
        text = "x" * 600

        preview = truncate_content(f"<div>{text}</div>")

        assert preview == "x" * 500 + "..."

    def test_exact_length_has_no_ellipsis(self):
        assert truncate_content("y" * 500) == "y" * 500

    def test_none_becomes_empty(self):
        assert truncate_content(None) == ""


class TestRelativeTime:
    @pytest.mark.parametrize("age, expected", [
        (timedelta(seconds=30), "just now"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=5), "5 minutes ago"),
        (timedelta(hours=1), "1 hour ago"),
        (timedelta(hours=23, minutes=59), "23 hours ago"),
        (timedelta(days=1), "1 day ago"),
        (timedelta(days=6), "6 days ago"),
        (timedelta(days=10), "2026-10-09"),
    ])
    def test_buckets(self, age, expected):
        assert format_relative_time(NOW - age, NOW) == expected

    def test_naive_datetime_is_utc(self):
        published = (NOW - timedelta(hours=2)).replace(tzinfo=None)

        assert format_relative_time(published, NOW) == "2 hours ago"


class TestArticleBlock:
    def make_article(self, content="<p>Body text</p>"):
        return Article(
            id="a-1",
            feed_id="feed-1",
            title="Big News",
            link="https://example.com/big",
            content=content,
            published_at=NOW - timedelta(minutes=5),
            fetched_at=NOW,
        )

    def test_block_layout(self):
        block = format_article_block(self.make_article(), "Tech Daily", NOW)

        assert block == (
            "### Big News\n"
            "**Source:** Tech Daily · 5 minutes ago\n"
            "**Link:** https://example.com/big\n"
            "\n"
            "Body text\n"
        )

    def test_unknown_feed_title(self):
        block = format_article_block(self.make_article(), None, NOW)

        assert "**Source:** unknown · 5 minutes ago" in block

    def test_preview_is_truncated(self):
        block = format_article_block(self.make_article("z" * 800), "Tech Daily", NOW)

        assert "z" * 500 + "...\n" in block
        assert "z" * 501 not in block
