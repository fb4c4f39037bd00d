"""Logging utilities for the MCP client."""

import logging
from typing import Literal

LOGGER_NAME = "mcp_client"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _create_handler() -> logging.Handler:
    try:
        from rich.console import Console
        from rich.logging import RichHandler
    except ImportError:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        return handler
    return RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)


def configure_logging(level: LogLevel = "INFO") -> logging.Logger:
    """Send the client's log records to stderr at ``level``.

    Only the ``mcp_client`` logger namespace is touched, so the application's
    own logging setup is left alone. Calling this again changes the level
    without adding a second handler.

    Returns:
        The ``mcp_client`` logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not any(getattr(handler, "_mcp_client", False) for handler in logger.handlers):
        handler = _create_handler()
        handler._mcp_client = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
    return logger
