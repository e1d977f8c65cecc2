"""MCP server package initialization"""

from feed_context.server.app import create_mcp_server, main

__all__ = ["create_mcp_server", "main"]
