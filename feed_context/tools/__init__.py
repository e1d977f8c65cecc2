"""MCP tools for feed_context."""
