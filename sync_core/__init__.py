# =============================================================================
# sync_core/__init__.py
# Offline-first synchronization cache for remote record backends
# =============================================================================

from sync_core.logging import setup_logging, get_logger
from sync_core.errors import (
    OfflineCacheError,
    RemoteError,
    QueryTranslationError,
    QueueOperationError,
    StoreError,
    ConfigurationError,
)
from sync_core.config import CacheConfig, load_config
from sync_core.offline import (
    Clause,
    Filter,
    Operator,
    OfflineCache,
    OperationType,
    QueryBuilder,
    QuerySource,
    SortSpec,
)
from sync_core.remote import (
    ListResult,
    RemoteClient,
    PocketBaseClient,
    SupabaseRemoteClient,
)

__version__ = "0.1.0"

__all__ = [
    "setup_logging",
    "get_logger",
    "OfflineCacheError",
    "RemoteError",
    "QueryTranslationError",
    "QueueOperationError",
    "StoreError",
    "ConfigurationError",
    "CacheConfig",
    "load_config",
    "Clause",
    "Filter",
    "Operator",
    "OfflineCache",
    "OperationType",
    "QueryBuilder",
    "QuerySource",
    "SortSpec",
    "ListResult",
    "RemoteClient",
    "PocketBaseClient",
    "SupabaseRemoteClient",
]
