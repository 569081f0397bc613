# =============================================================================
# sync_core/errors/handlers.py
# Error Handling Utilities for the offline sync cache
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar

from sync_core.logging import get_logger
from .exceptions import OfflineCacheError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        message: Custom message to log (uses the error message if None)
    """
    if isinstance(error, OfflineCacheError):
        text = message or error.message
        code = error.code
        details = error.details
    else:
        text = message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}

    if log_error:
        logger.error(
            f"[{code}] {text}",
            extra={"details": details},
            exc_info=error,
        )


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Used for application-supplied callbacks, which must never break the
    background loop that invokes them.

    Usage:
        safe_execute(listener, True, error_message="Network listener failed")
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    Usage:
        with ErrorContext("Resyncing tables"):
            coordinator.resync_all()

        # On error, logs "Error during: Resyncing tables" and continues
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if not issubclass(exc_type, Exception):
                return False
            self.error = exc_val
            if isinstance(exc_val, OfflineCacheError):
                handle_error(exc_val)
            else:
                handle_error(exc_val, message=f"Error during: {self.operation}")

            # Suppress exception if recoverable
            return self.recoverable

        logger.debug(f"Completed: {self.operation}")
        return False
