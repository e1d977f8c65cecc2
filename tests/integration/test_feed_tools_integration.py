"""MCP Feed Tools Integration Tests.

This test suite validates the feed_context MCP tools work correctly when accessed
via an MCP client, testing the complete protocol flow.
"""

import pytest

from .conftest import extract_text_content


# Use anyio instead of pytest-asyncio to match SDK approach
pytestmark = pytest.mark.anyio

EXPECTED_TOOLS = [
    "add_feed",
    "remove_feed",
    "list_feeds",
    "update_feed_status",
    "refresh_feeds",
    "list_categories",
    "create_category",
    "delete_category",
    "list_recent_articles",
    "search_articles",
    "mark_article_read",
    "mark_article_unread",
    "toggle_article_starred",
    "list_starred_articles",
    "cleanup_articles",
    "process_mention",
    "mention_suggestions",
]


class TestFeedToolDiscovery:
    """Test feed tool discovery functionality."""

    async def test_all_feed_tools_discoverable(self, mcp_session):
        """Verify every feed tool is registered."""
        tools_response = await mcp_session.list_tools()

        tool_names = [tool.name for tool in tools_response.tools]

        for expected in EXPECTED_TOOLS:
            assert expected in tool_names, f"Feed tool {expected} not found in {tool_names}"

    async def test_no_kwargs_or_ctx_in_schemas(self, mcp_session):
        """Test that decorated tools expose only their real parameters."""
        tools_response = await mcp_session.list_tools()

        for tool in tools_response.tools:
            properties = (tool.inputSchema or {}).get("properties", {})
            assert "kwargs" not in properties, f"{tool.name} exposes kwargs"
            assert "ctx" not in properties, f"{tool.name} exposes ctx"

    async def test_feed_tools_have_descriptions(self, mcp_session):
        tools_response = await mcp_session.list_tools()

        for tool in tools_response.tools:
            assert tool.description, f"Tool {tool.name} has no description"

    async def test_add_feed_requires_url(self, mcp_session):
        tools_response = await mcp_session.list_tools()
        add_feed = next(t for t in tools_response.tools if t.name == "add_feed")

        assert add_feed.inputSchema["required"] == ["url"]


class TestFeedToolExecution:
    """Test tool calls over the protocol against an empty database."""

    async def test_list_feeds_empty(self, mcp_session):
        result = await mcp_session.call_tool("list_feeds", {})

        assert not result.isError
        data = extract_text_content(result)
        assert data["success"] is True
        assert data["count"] == 0

    async def test_add_feed_invalid_url(self, mcp_session):
        """Test that bad input comes back as an error payload."""
        result = await mcp_session.call_tool("add_feed", {"url": "notaurl"})

        data = extract_text_content(result)
        assert data["success"] is False
        assert data["error_type"] == "InvalidInputError"

    async def test_refresh_with_no_feeds(self, mcp_session):
        result = await mcp_session.call_tool("refresh_feeds", {})

        data = extract_text_content(result)
        assert data["success"] is True
        assert data["feeds_refreshed"] == 0
        assert data["results"] == []

    async def test_refresh_unknown_feed(self, mcp_session):
        result = await mcp_session.call_tool("refresh_feeds", {"feed_id": "nonexistent"})

        data = extract_text_content(result)
        assert data["success"] is False
        assert data["error_type"] == "NotFoundError"

    async def test_category_lifecycle(self, mcp_session):
        created = extract_text_content(
            await mcp_session.call_tool("create_category", {"name": "Tech"})
        )
        category_id = created["category"]["id"]

        listed = extract_text_content(await mcp_session.call_tool("list_categories", {}))
        assert [c["name"] for c in listed["categories"]] == ["Tech"]

        await mcp_session.call_tool("delete_category", {"category_id": category_id})
        listed = extract_text_content(await mcp_session.call_tool("list_categories", {}))
        assert listed["count"] == 0

    async def test_list_recent_articles_string_parameters(self, mcp_session):
        """Test numeric parameters given as strings are coerced."""
        result = await mcp_session.call_tool("list_recent_articles", {"hours": "12", "limit": "5"})

        data = extract_text_content(result)
        assert data["success"] is True
        assert data["articles"] == []

    async def test_mark_article_read_not_found(self, mcp_session):
        result = await mcp_session.call_tool("mark_article_read", {"article_id": "missing"})

        data = extract_text_content(result)
        assert data["success"] is False
        assert data["error_type"] == "NotFoundError"


class TestMentionToolExecution:
    """Test the mention tools over the protocol."""

    async def test_process_mention_without_feeds(self, mcp_session):
        result = await mcp_session.call_tool("process_mention", {"message": "Summarize @rss"})

        data = extract_text_content(result)
        assert data["has_mention"] is True
        assert data["context"] is None
        assert data["enriched_message"].startswith("Summarize @rss")
        assert "not configured" in data["enriched_message"]

    async def test_mention_suggestions(self, mcp_session):
        await mcp_session.call_tool("create_category", {"name": "Science"})

        result = await mcp_session.call_tool("mention_suggestions", {})

        labels = [s["label"] for s in extract_text_content(result)["suggestions"]]
        assert labels == ["@rss", "@news", "@rss:science"]
