"""Fixtures for MCP integration tests.

The server runs in-process and talks to a real MCP ClientSession over memory
streams, so the full protocol path (tool listing, argument validation, result
serialization, lifespan) is exercised without network access.
"""

import json
from typing import Any, Dict

import pytest
from mcp.shared.memory import create_connected_server_and_client_session

from feed_context.config import ServerConfig
from feed_context.log_system.unified_logger import UnifiedLogger
from feed_context.server.app import create_mcp_server


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(
        name="feed_context_test",
        log_level="WARNING",
        db_path=tmp_path / "feeds.db",
        auto_refresh=False,
    )


@pytest.fixture
async def mcp_session(server_config):
    server = create_mcp_server(server_config)
    async with create_connected_server_and_client_session(server._mcp_server) as session:
        yield session
    UnifiedLogger.close()


def extract_text_content(result) -> Dict[str, Any]:
    """Decode the JSON payload of a tool result."""
    assert result.content, "tool returned no content"
    return json.loads(result.content[0].text)
