"""Logging configuration for the CLI and embedding applications."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route blogkit's loggers through a rich handler on stderr."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    root = logging.getLogger("blogkit")
    root.handlers = [handler]
    root.setLevel(level.upper())
    root.propagate = False
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
