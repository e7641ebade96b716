"""Logging setup for fwflash.

Logs go to a rotating file under the log directory and, optionally, to the
console. Module code logs through the root logger (``logging.info(...)``).
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILENAME = "fwflash.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 10


def setup_logging(log_dir: Path, console: bool = False, verbose: bool = False) -> Path:
    """Configure the root logger.

    Args:
        log_dir: Directory for the rotating log file (created if missing)
        console: Whether to also log to stderr
        verbose: Log DEBUG instead of INFO

    Returns:
        Path of the log file
    """
    level = logging.DEBUG if verbose else logging.INFO
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILENAME

    logger = logging.getLogger()
    logger.setLevel(level)

    # Re-running setup (tests, repeated CLI invocations) must not stack handlers
    for handler in list(logger.handlers):
        if getattr(handler, "_fwflash", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler._fwflash = True  # type: ignore[attr-defined]
        logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    file_handler._fwflash = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)

    return log_file
