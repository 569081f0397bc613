# =============================================================================
# sync_core/errors/__init__.py
# Centralized Error Handling for the offline sync cache
# =============================================================================

from .exceptions import (
    OfflineCacheError,
    RemoteError,
    QueryTranslationError,
    QueueOperationError,
    StoreError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "OfflineCacheError",
    "RemoteError",
    "QueryTranslationError",
    "QueueOperationError",
    "StoreError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
]
