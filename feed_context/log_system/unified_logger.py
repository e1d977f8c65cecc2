"""Single entry point for obtaining loggers.

Modules call ``UnifiedLogger.get_logger(__name__)``; the server calls
``UnifiedLogger.initialize_default(config)`` once at startup.
"""

import logging
from typing import Optional

from feed_context.config import ServerConfig

ROOT_LOGGER_NAME = "feed_context"


class UnifiedLogger:
    """Namespace for package-wide logging state."""

    _initialized = False

    @classmethod
    def initialize_default(cls, config: Optional[ServerConfig] = None) -> None:
        from feed_context.logging_config import setup_logging

        setup_logging(config)
        cls._initialized = True

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Return a logger that lives under the ``feed_context`` namespace."""
        if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
            name = f"{ROOT_LOGGER_NAME}.{name}"
        return logging.getLogger(name)

    @classmethod
    def close(cls) -> None:
        """Flush and detach all handlers."""
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            handler.flush()
            root.removeHandler(handler)
            handler.close()
        cls._initialized = False
