"""Turn exceptions raised by MCP tools into error payloads."""

import functools
from typing import Any, Callable, Dict

from feed_context.errors import FeedContextError
from feed_context.log_system.unified_logger import UnifiedLogger


def exception_handler(func: Callable) -> Callable:
    """Wrap an async tool so it returns ``{"success": False, "error": ...}`` instead of raising.

    Expected errors (FeedContextError) are logged as warnings with their message;
    anything else is logged with a traceback.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Dict[str, Any]:
        logger = UnifiedLogger.get_logger(func.__module__)
        try:
            return await func(*args, **kwargs)
        except FeedContextError as e:
            logger.warning(f"{func.__name__} failed: {e}")
            return {
                "success": False,
                "error": str(e),
                "error_type": type(e).__name__,
            }
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            return {
                "success": False,
                "error": f"Internal error: {e}",
                "error_type": type(e).__name__,
            }

    return wrapper
