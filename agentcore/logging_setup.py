"""Logging configuration for the agentcore namespace."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "agentcore"

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    level: int = logging.WARNING,
    log_dir: Path | None = None,
    file_level: int = logging.INFO,
) -> Path | None:
    """Install console (and optionally rotating file) handlers on ``agentcore``.

    Library modules only create loggers; applications call this once.
    Reconfiguring replaces the previous handlers.

    Args:
        level: Console logging level (default WARNING).
        log_dir: Directory for ``agentcore.log``. Created if it doesn't exist.
            No file logging when None.
        file_level: Logging level for the file (default INFO).

    Returns:
        Path to the log file, or None without file logging.

    Example:
        configure_logging(logging.DEBUG)
    """
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.handlers.clear()
    package_logger.addHandler(console_handler)
    package_logger.propagate = False

    if log_dir is None:
        package_logger.setLevel(level)
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "agentcore.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    package_logger.addHandler(file_handler)
    package_logger.setLevel(min(level, file_level))

    package_logger.info("File logging configured: %s", log_file)
    return log_file
