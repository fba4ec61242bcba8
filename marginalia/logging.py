"""Logging for Marginalia: colored console output and note outcome reporting."""

import logging
import sys
from typing import Optional

# Package logger
logger = logging.getLogger("marginalia")


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to log levels for terminal output."""

    COLORS = {
        logging.DEBUG: "\033[36m",    # Cyan
        logging.INFO: "\033[32m",     # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",    # Red
        logging.CRITICAL: "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelno, "")
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = levelname


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
    use_colors: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        verbose: If True, set level to DEBUG
        quiet: If True, set level to ERROR only
        log_file: Optional path to write logs to file
        use_colors: If True, use colored output in terminal
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    logger = logging.getLogger("marginalia")
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_fmt = "%(levelname)s: %(message)s"
    if verbose:
        console_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    console_formatter = ColoredFormatter(console_fmt, datefmt="%H:%M:%S", use_colors=use_colors)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        file_formatter = logging.Formatter(file_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    # Flask logs every request through werkzeug; keep that for --verbose
    logging.getLogger("werkzeug").setLevel(logging.DEBUG if verbose else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(f"marginalia.{name.split('.')[-1]}")


def log_outcome(logger: logging.Logger, action: str, note_id: str, outcome) -> None:
    """Report how a note operation ended.

    Persisted changes log at INFO, changes kept only in memory at WARNING and
    refused operations at DEBUG (the caller already has the reason).

    Args:
        logger: Logger of the calling module
        action: Verb for the message, e.g. "save"
        note_id: Note the operation touched
        outcome: The ``Outcome`` returned to the caller
    """
    if outcome.ok:
        logger.info("Note %s: %s done", note_id, action)
    elif outcome.applied:
        logger.warning("Note %s: %s kept in memory only (%s)", note_id, action, outcome.reason)
    else:
        logger.debug("Note %s: %s refused (%s)", note_id, action, outcome.reason)
