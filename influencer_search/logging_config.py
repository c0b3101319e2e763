"""Logging configuration using loguru"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

NO_SEARCH = "--------"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[search_id]}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[search_id]} | {name}:{function}:{line} | {message}"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """
    Configure loguru for search runs.

    Every line carries the id of the search that emitted it (the orchestrator
    binds it with logger.contextualize), so interleaved concurrent searches
    can be told apart. Lines outside a search show a placeholder.

    Args:
        verbose: Debug level on the console (breaker probes, cache hits, batches)
        log_file: Optional file that always receives debug level, rotated and zipped
    """
    logger.remove()
    logger.configure(extra={"search_id": NO_SEARCH})

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level="DEBUG" if verbose else "INFO",
        colorize=True,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )
        logger.info(f"📝 Logging to file: {log_file}")
