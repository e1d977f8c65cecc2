"""feed_context - MCP Server with Decorators

This module implements the MCP server using FastMCP with multi-transport support
(STDIO, SSE, and Streamable HTTP). Tools are wrapped with the exception handling
and logging decorators, and a lifespan hook owns the FeedManager: it loads the
feed cache on startup, runs the auto-refresh timers and closes the store on
shutdown.
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import click
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from feed_context.config import ServerConfig, get_config
from feed_context.decorators.exception_handler import exception_handler
from feed_context.decorators.tool_logger import tool_logger
from feed_context.log_system.correlation import (
    clear_initialization_correlation_id,
    generate_correlation_id,
    set_initialization_correlation_id,
)
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.tools import feed_tools as feed_tools_module
from feed_context.tools.feed_tools import feed_tools


def _make_lifespan(config: ServerConfig):
    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        logger = UnifiedLogger.get_logger(__name__)
        manager = await feed_tools_module.init_feed_manager(config)
        logger.info(f"Loaded {len(manager.get_managed_feeds())} feeds from {config.db_path}")

        if config.auto_refresh:
            manager.start_auto_refresh()
        try:
            yield
        finally:
            await feed_tools_module.close_feed_manager()
            logger.info("Feed manager closed")

    return lifespan


def create_mcp_server(config: Optional[ServerConfig] = None) -> FastMCP:
    """Create and configure the MCP server with decorators.

    Args:
        config: Optional server configuration

    Returns:
        Configured FastMCP server instance
    """
    if config is None:
        config = get_config()

    # Set startup correlation ID before initializing logging
    startup_correlation_id = "startup_" + generate_correlation_id().split("_")[1]
    set_initialization_correlation_id(startup_correlation_id)

    UnifiedLogger.initialize_default(config)

    logger = UnifiedLogger.get_logger(__name__)
    logger.info(f"Server config: {config.name} at log level {config.log_level}")

    # Configure DNS rebinding protection (disabled by default for development)
    dns_protection = os.getenv("MCP_DNS_REBINDING_PROTECTION", "false").lower() == "true"
    allowed_hosts_env = os.getenv("MCP_ALLOWED_HOSTS", "")
    allowed_hosts = [h.strip() for h in allowed_hosts_env.split(",") if h.strip()]

    logger.info(f"DNS rebinding protection: {'enabled' if dns_protection else 'disabled'}")
    if dns_protection and allowed_hosts:
        logger.info(f"Allowed hosts: {allowed_hosts}")

    mcp_server = FastMCP(
        config.name or "feed_context",
        lifespan=_make_lifespan(config),
        transport_security=TransportSecuritySettings(
            enable_dns_rebinding_protection=dns_protection,
            allowed_hosts=allowed_hosts,
        ),
    )

    register_tools(mcp_server, config)

    logger.info("Server initialization complete")
    clear_initialization_correlation_id()

    return mcp_server


def register_tools(mcp_server: FastMCP, config: ServerConfig) -> None:
    """Register all feed tools, wrapped as exception_handler -> tool_logger -> tool.

    Decorated functions keep their signatures (functools.wraps) so FastMCP can
    introspect parameters.
    """
    logger = UnifiedLogger.get_logger(__name__)

    for tool_func in feed_tools:
        decorated_func = exception_handler(tool_logger(tool_func, config.model_dump()))
        mcp_server.tool(name=tool_func.__name__)(decorated_func)
        logger.info(f"Registered feed tool: {tool_func.__name__}")

    logger.info(f"Server '{mcp_server.name}' initialized with {len(feed_tools)} tools")


@click.command()
@click.option(
    "--port",
    default=3001,
    help="Port to listen on for SSE or Streamable HTTP transport"
)
@click.option(
    "--host",
    default="127.0.0.1",
    help="Host to bind to (use 0.0.0.0 for Docker)"
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "sse", "streamable-http"]),
    default="stdio",
    help="Transport type (stdio, sse, or streamable-http)"
)
def main(port: int, host: str, transport: str) -> int:
    """Run the feed_context server with specified transport."""
    server = create_mcp_server()
    logger = UnifiedLogger.get_logger(__name__)

    async def run_server():
        try:
            if transport == "stdio":
                logger.info("Starting server with STDIO transport")
                await server.run_stdio_async()
            elif transport == "sse":
                logger.info(f"Starting server with SSE transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                await server.run_sse_async()
            elif transport == "streamable-http":
                logger.info(f"Starting server with Streamable HTTP transport on {host}:{port}")
                server.settings.host = host
                server.settings.port = port
                server.settings.streamable_http_path = "/mcp"
                await server.run_streamable_http_async()
            else:
                raise ValueError(f"Unknown transport: {transport}")
        finally:
            UnifiedLogger.close()

    try:
        asyncio.run(run_server())
        return 0
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        return 0
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        return 1


def main_stdio() -> int:
    """Entry point for STDIO transport (convenience wrapper)."""
    return main.callback(port=3001, host="127.0.0.1", transport="stdio")


def main_http() -> int:
    """Entry point for Streamable HTTP transport (convenience wrapper)."""
    return main.callback(port=3001, host="127.0.0.1", transport="streamable-http")


def main_sse() -> int:
    """Entry point for SSE transport (convenience wrapper)."""
    return main.callback(port=3001, host="127.0.0.1", transport="sse")


if __name__ == "__main__":
    sys.exit(main())
