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
    rich_output: bool = False,
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """
    Configure process-wide logging and return a scoped logger.

    Logs go to stderr so that stdout carries only command ids and summaries.
    ``rich_output`` swaps the plain pipe-separated format for Rich's handler.
    """
    level = logging.DEBUG if verbose else logging.INFO
    if rich_output:
        handler: logging.Handler = RichHandler(console=Console(stderr=True), show_time=True, show_path=False)
        fmt = "%(message)s"
    else:
        handler = logging.StreamHandler(sys.stderr)
        fmt = LOG_FORMAT
    logging.basicConfig(level=level, format=fmt, datefmt=DATE_FORMAT, handlers=[handler], force=True)
    for noisy in ("botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logger = logging.getLogger(logger_name or "fleet_dispatch")
    logger.debug("Logging configured with level %s", logging.getLevelName(level))
    return logger
