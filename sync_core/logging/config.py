# =============================================================================
# sync_core/logging/config.py
# Logging Configuration for the offline sync cache
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional, Union


# Log format
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log directory
LOG_DIR = Path("logs")

# Root of every logger in this package
PACKAGE_LOGGER = "sync_core"

# Chatty HTTP / backend libraries used by the remote adapters
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "supabase", "postgrest")


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = False,
    log_filename: Optional[str] = None,
    propagate: bool = False,
) -> logging.Logger:
    """
    Send the cache's logs (queue drains, resync passes, connectivity
    changes, schema drops) to stdout and optionally to a file.

    Only the ``sync_core`` logger is configured, so an embedding app
    (Streamlit or otherwise) keeps control of the root logger. Calling it
    again replaces the handlers installed by the previous call.

    Args:
        level: Level as an int or a name such as "DEBUG"
        log_to_file: Also write to LOG_DIR/log_filename
        log_filename: Default sync_YYYY-MM-DD.log
        propagate: Also pass records up to the root logger's handlers

    Returns:
        The configured ``sync_core`` logger
    """
    if isinstance(level, str):
        name = level.upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name}")

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        if log_filename is None:
            log_filename = f"sync_{datetime.now().strftime('%Y-%m-%d')}.log"
        handlers.append(logging.FileHandler(LOG_DIR / log_filename))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = propagate

    # Request-level chatter from the HTTP stack drowns out drain/resync logs
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.info(f"Logging initialized at {logging.getLevelName(level)}")
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Usage:
        from sync_core.logging import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


class LogContext:
    """
    Times a cache operation and logs its start, completion or failure.

    Usage:
        with LogContext(logger, f"Replaying {len(operations)} queued operation(s)"):
            for operation in operations:
                self._replay(operation)
        # Replaying 3 queued operation(s)... started
        # Replaying 3 queued operation(s)... completed (0.12s)

    Resync passes log at DEBUG so the 10 second monitor loop stays quiet:

        with LogContext(logger, "Resyncing cached tables", level=logging.DEBUG):
            ...
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time = None
        self.elapsed: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.monotonic() - self.start_time

        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}",
                exc_info=True
            )

        return False  # Don't suppress exceptions
