"""
Logging configuration for SITECALL.

Console records go to stderr, prefixed with a colored level tag when
stderr is a terminal. An optional log file receives the same records as
plain text with timestamps and logger names, which is where per-taxon
build summaries from worker processes end up during long runs.

Library modules only call ``logging.getLogger(__name__)``; the handlers
live on the ``sitecall`` logger and are installed by the command line
tools through setup_logging().
"""

import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional

RESET = "\033[0m"

LEVEL_COLORS = {
    logging.DEBUG: "\033[0;90m",
    logging.INFO: "\033[0;32m",
    logging.WARNING: "\033[1;33m",
    logging.ERROR: "\033[0;31m",
    logging.CRITICAL: "\033[1;31m",
}

CONSOLE_FORMAT = "%(levelname)s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-8s %(processName)s %(name)s: %(message)s"


class ColoredFormatter(logging.Formatter):
    """Console formatter writing the level as a ``[LEVEL]`` tag.

    The tag is colored only when requested and stderr is a terminal, so
    redirected output stays free of escape codes.
    """

    def __init__(self, fmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt or CONSOLE_FORMAT)
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        tagged = logging.makeLogRecord(record.__dict__)
        tag = f"[{record.levelname}]"
        if self.use_colors:
            tag = f"{LEVEL_COLORS.get(record.levelno, RESET)}{tag}{RESET}"
        tagged.levelname = tag
        return super().format(tagged)


def setup_logging(
    name: str = "sitecall",
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    use_colors: bool = True,
    verbose: bool = False,
) -> logging.Logger:
    """
    Install console and optional file handlers on a logger.

    Calling this again replaces the handlers, so each command invocation
    (or test) starts from a clean logger.

    Args:
        name: Logger name (default: "sitecall")
        level: Logging level (default: INFO)
        log_file: Optional path to a plain-text log file
        use_colors: Color level tags on the console (default: True)
        verbose: Shortcut for level=DEBUG

    Returns:
        Configured logger instance
    """
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(ColoredFormatter(use_colors=use_colors))
    logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "sitecall") -> logging.Logger:
    """Return a logger, installing the default handlers if it has none."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        setup_logging(name)
    return logger


def log_settings(logger: logging.Logger, settings: Mapping[str, Any], title: str = "Settings") -> None:
    """Log a settings mapping one key per line at DEBUG level."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug("%s:", title)
    width = max((len(key) for key in settings), default=0)
    for key in sorted(settings):
        logger.debug("  %-*s %s", width, key, settings[key])
