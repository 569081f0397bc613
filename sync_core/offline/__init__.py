# =============================================================================
# sync_core/offline/__init__.py
# Offline-First Record Cache
# =============================================================================
"""
Offline-first access to remote collections.

Components:
- LocalStore: SQLite mirror of remote collections
- query_translator: filter/sort/cursor translation (SQLite and PocketBase)
- MutationQueue: durable FIFO of INSERT/UPDATE/DELETE intents
- ConnectionManager: ONLINE/OFFLINE monitor thread
- ResyncCoordinator: incremental pull of remote changes
- OfflineCache / QueryBuilder: the caller-facing API
"""

from .schema import (
    BOOL_PREFIX,
    JSON_PREFIX,
    ColumnSpec,
    TableSchema,
    ValueKind,
)
from .query_translator import (
    Clause,
    Filter,
    Operator,
    QuerySource,
    SortSpec,
    TranslatedQuery,
    render_remote_filter,
    render_remote_sort,
    translate,
)
from .local_store import (
    RESERVED_TABLES,
    IndexInstruction,
    LocalStore,
    UpsertOutcome,
)
from .mutation_queue import (
    DrainState,
    MutationQueue,
    OperationType,
    QueuedOperation,
)
from .connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from .resync import ResyncCoordinator
from .query_builder import QueryBuilder
from .offline_cache import OfflineCache, generate_record_id

__all__ = [
    # Schema
    "BOOL_PREFIX",
    "JSON_PREFIX",
    "ColumnSpec",
    "TableSchema",
    "ValueKind",
    # Queries
    "Clause",
    "Filter",
    "Operator",
    "QuerySource",
    "SortSpec",
    "TranslatedQuery",
    "render_remote_filter",
    "render_remote_sort",
    "translate",
    # Local store
    "RESERVED_TABLES",
    "IndexInstruction",
    "LocalStore",
    "UpsertOutcome",
    # Queue
    "DrainState",
    "MutationQueue",
    "OperationType",
    "QueuedOperation",
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Facade
    "ResyncCoordinator",
    "QueryBuilder",
    "OfflineCache",
    "generate_record_id",
]
