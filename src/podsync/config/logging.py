"""Logging setup for the podsync CLI."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    level: str = "WARNING",
) -> logging.Logger:
    """Configure the ``podsync`` logger.

    Console output goes through rich on stderr. With ``log_file``, records are
    also written to that file in plain text.

    Args:
        verbose: Log at DEBUG level, overriding ``level``
        log_file: Optional file to also write logs to
        level: Log level name when not verbose

    Returns:
        The configured ``podsync`` logger
    """
    logger = logging.getLogger("podsync")
    logger.setLevel(logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING))

    # Replace handlers from a previous setup, e.g. when invoked repeatedly in tests
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    return logger
