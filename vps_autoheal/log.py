"""Console logging and the append-only audit trail."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "vps_autoheal"
AUDIT_LOGGER_NAME = "vps_autoheal.audit"
AUDIT_FORMAT = "%(asctime)s | %(message)s"
AUDIT_DATEFMT = "%Y-%m-%d %H:%M:%S"

console = Console(stderr=True, highlight=False)


def setup_logger(verbose: bool = False, rich_console: Optional[Console] = None) -> logging.Logger:
    """Configure the console logger used for operator-facing messages."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for h in logger.handlers[:]:
        logger.removeHandler(h)
    console_handler = RichHandler(console=rich_console or console, rich_tracebacks=True, show_path=False)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console_handler)
    return logger


def setup_audit_logger(log_file: Union[str, Path]) -> logging.Logger:
    """
    Return a logger that appends ``YYYY-MM-DD HH:MM:SS | message`` lines.

    The file is opened in append mode and never rotated or truncated.
    The audit logger does not propagate, so audit lines stay out of the
    console output.
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()
    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setFormatter(logging.Formatter(AUDIT_FORMAT, AUDIT_DATEFMT))
    logger.addHandler(file_handler)
    try:
        os.chmod(str(log_file), 0o640)
    except OSError as e:
        logging.getLogger(LOGGER_NAME).warning(f"Could not set permissions on log file {log_file}: {e}")
    return logger


def close_audit_logger() -> None:
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()
