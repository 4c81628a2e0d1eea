from __future__ import annotations

import logging
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    verbose: bool = False,
    logger_name: Optional[str] = None,
    rich_output: bool = False,
) -> logging.Logger:
    """
    Configure process-wide logging and return a scoped logger.

    Plain stdout formatting is the default so server logs stay greppable; the CLI
    opts into the Rich handler for interactive sessions.
    """
    level = logging.DEBUG if verbose else logging.INFO
    if rich_output:
        handler: logging.Handler = RichHandler(console=Console(stderr=True), show_time=True, show_path=False)
        fmt = "%(message)s"
    else:
        handler = logging.StreamHandler(sys.stdout)
        fmt = LOG_FORMAT
    logging.basicConfig(
        level=level,
        format=fmt,
        datefmt=DATE_FORMAT,
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO; keep it out of run output unless verbose.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger = logging.getLogger(logger_name or "bizbox")
    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
