"""Logging setup for feed_context.

Logs go to stderr (stdout carries the MCP stdio transport) and, when
configured, to a rotating log file.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from feed_context.config import ServerConfig
from feed_context.log_system.correlation import CorrelationIdFilter

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s]: %(message)s"

logger = logging.getLogger("feed_context")


def setup_logging(config: Optional[ServerConfig] = None) -> logging.Logger:
    """Configure the package logger.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.

    Args:
        config: Server configuration (log level and optional log file)

    Returns:
        The configured ``feed_context`` logger
    """
    level_name = config.log_level if config else "INFO"
    level = getattr(logging, level_name.upper(), logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    correlation_filter = CorrelationIdFilter()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(correlation_filter)
    logger.addHandler(stream_handler)

    if config and config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(correlation_filter)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger
