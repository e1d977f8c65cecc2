"""Log every MCP tool invocation under its own correlation id."""

import functools
import time
from typing import Any, Callable, Dict, Optional

from feed_context.log_system.correlation import (
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from feed_context.log_system.unified_logger import UnifiedLogger


def tool_logger(func: Callable, config: Optional[Dict[str, Any]] = None) -> Callable:
    """Wrap an async tool with start/finish logging and timing."""
    server_name = (config or {}).get("name", "feed_context")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = UnifiedLogger.get_logger(func.__module__)
        token = set_correlation_id(generate_correlation_id())
        started = time.perf_counter()
        logger.info(f"[{server_name}] tool {func.__name__} started")
        try:
            result = await func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"[{server_name}] tool {func.__name__} finished in {elapsed_ms:.1f}ms")
            return result
        except Exception:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"[{server_name}] tool {func.__name__} raised after {elapsed_ms:.1f}ms")
            raise
        finally:
            reset_correlation_id(token)

    return wrapper
