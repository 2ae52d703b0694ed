"""Run logging for imagebake.

Each run writes a fresh log file (truncated on start) with timestamped
records, and mirrors the same records to standard error through rich,
colour-coded by level.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console

LOGGER_NAME = "imagebake"

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.INFO: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}


class ConsoleHandler(logging.Handler):
    """Logging handler that prints records to a rich console.

    Messages are printed verbatim (no markup), coloured by level.
    """

    def __init__(self, console: Console | None = None, level: int = logging.NOTSET):
        super().__init__(level)
        self.console = console or Console(stderr=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            style = LEVEL_STYLES.get(record.levelno, "")
            self.console.print(
                f"==> {message}",
                style=style,
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
        except Exception:
            self.handleError(record)


def configure_logging(
    log_path: Path,
    level: str = "INFO",
    console: Console | None = None,
) -> logging.Logger:
    """Set up logging for a run.

    Replaces any handlers installed by a previous call, truncates the log
    file and attaches a file handler and a console handler to the package
    logger.

    Args:
        log_path: Path to the run log (truncated).
        level: Logging level name.
        console: Console to mirror records to (stderr if not provided).

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.write_text("", encoding="utf-8")

    # Append mode: the build runner writes to the same file through its own handle
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    logger.addHandler(file_handler)

    console_handler = ConsoleHandler(console)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    logger.setLevel(level)
    return logger


def flush_logging() -> None:
    """Flush the package logger's handlers.

    Called before another writer appends to the same log file.
    """
    for handler in logging.getLogger(LOGGER_NAME).handlers:
        handler.flush()


__all__ = ["ConsoleHandler", "LOGGER_NAME", "configure_logging", "flush_logging"]
