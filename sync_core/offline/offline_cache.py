# =============================================================================
# sync_core/offline/offline_cache.py
# OfflineCache - Single API for Online/Offline Record Access
# =============================================================================
"""
OfflineCache - the entry point of the library.

This facade automatically handles:
- Online mode: remote reads that refresh the local SQLite mirror
- Offline mode: reads from the mirror, mutations parked in a durable queue
- Seamless fallback when a remote read fails
- Queue replay and incremental resync whenever the remote is reachable

Usage:
------
from sync_core import OfflineCache, PocketBaseClient

cache = OfflineCache(PocketBaseClient("https://pb.example.com"), "local_data")

notes = (
    cache.collection("notes")
    .where("status", is_equal_to=True)
    .where("created", is_greater_than_or_equal_to="2022-08-01")
    .order_by("created")
    .get(max_items=50)
)

cache.update_record("notes", notes[0]["id"], {"title": "Edited offline"})
"""

from __future__ import annotations
import secrets
import sqlite3
import string
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import logging

from sync_core.config import CacheConfig, load_config
from sync_core.errors import ErrorContext, RemoteError
from sync_core.offline.connection_manager import ConnectionManager
from sync_core.offline.local_store import IndexInstructions, LocalStore, UpsertOutcome
from sync_core.offline.mutation_queue import MutationQueue, OperationType
from sync_core.offline.query_builder import QueryBuilder
from sync_core.offline.query_translator import (
    Filter,
    QuerySource,
    SortSpec,
    TranslatedQuery,
    WhereLike,
    translate,
)
from sync_core.offline.resync import GenerateWhere, ResyncCoordinator
from sync_core.offline.schema import utc_now_string
from sync_core.remote.base_client import RemoteClient

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY = "local_data"

RECORD_ID_ALPHABET = string.ascii_lowercase + string.digits
RECORD_ID_LENGTH = 15

AUTH_REJECTED_STATUSES = (401, 403)


def generate_record_id() -> str:
    """Random 15-character [a-z0-9] id, the format PocketBase assigns."""
    return "".join(secrets.choice(RECORD_ID_ALPHABET) for _ in range(RECORD_ID_LENGTH))


class OfflineCache:
    """
    Offline-first access to the collections of a remote backend.

    One instance owns one SQLite file, one mutation queue and one
    connectivity monitor thread.
    """

    def __init__(
        self,
        remote: RemoteClient,
        directory: Optional[Union[str, Path]] = None,
        *,
        config: Optional[CacheConfig] = None,
        index_instructions: Optional[IndexInstructions] = None,
        network_state_listener: Optional[Callable[[bool], None]] = None,
        local_cache_updated_listener: Optional[Callable[[], None]] = None,
        generate_where_for_resync: Optional[GenerateWhere] = None,
        start_monitoring: Optional[bool] = None,
    ):
        """
        Args:
            remote: Backend adapter
            directory: Folder holding the SQLite file
            config: Settings (default: load_config())
            index_instructions: {table: [(index_name, unique, [columns])]}
            network_state_listener: Called with True/False on connectivity changes
            local_cache_updated_listener: Called after a resync pass stored records
            generate_where_for_resync: (table, last_update) -> filter or None
            start_monitoring: Start the monitor thread (default: not config.test_mode)
        """
        self.config = config or load_config()
        self.remote = remote

        directory = Path(directory or self.config.directory or DEFAULT_DIRECTORY)
        self.store = LocalStore(directory / self.config.db_filename, index_instructions)
        self.queue = MutationQueue(self.store, remote)

        self.connection = ConnectionManager(
            remote.health_check,
            reconcile=self.reconcile,
            check_interval=self.config.check_interval,
        )
        if network_state_listener is not None:
            self.connection.register_callback(network_state_listener)

        self.resync = ResyncCoordinator(
            self.store,
            self._fetch_for_resync,
            generate_where=generate_where_for_resync,
            on_cache_updated=local_cache_updated_listener,
        )

        if start_monitoring is None:
            start_monitoring = not self.config.test_mode
        if start_monitoring:
            self.connection.start_monitoring()

        logger.info(f"OfflineCache ready at {self.store.db_path}")

    @property
    def is_online(self) -> bool:
        return self.connection.is_online

    @property
    def is_offline(self) -> bool:
        return self.connection.is_offline

    @property
    def pending_operation_count(self) -> int:
        return self.queue.pending_count()

    # =========================================================================
    # READS
    # =========================================================================

    def collection(self, name: str) -> QueryBuilder:
        """Start a query on a collection."""
        return QueryBuilder(self, name)

    def get_records(
        self,
        collection: str,
        *,
        max_items: Optional[int] = None,
        where: WhereLike = None,
        sort: Any = None,
        start_after: Optional[Mapping[str, Any]] = None,
        source: Union[QuerySource, str] = QuerySource.ANY,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of records.

        Args:
            collection: Collection name
            max_items: Page size (default: config.default_max_items)
            where: Filter, Clause list, or ("a = ? && b > ?", [v1, v2])
            sort: SortSpec, (column, descending) or "-column"
            start_after: Cursor record; requires a sort
            source: QuerySource

        Returns:
            List of records

        Raises:
            QueryTranslationError: Malformed filter or cursor
            RemoteError: Only for QuerySource.SERVER
        """
        max_items = max_items or self.config.default_max_items
        source = QuerySource(source)
        flt = Filter.coerce(where)
        sort = SortSpec.coerce(sort)
        query = translate(
            flt, sort, start_after, limit=max_items, schema=self.store.get_schema(collection)
        )

        if source is QuerySource.CACHE or (source is QuerySource.ANY and self.is_offline):
            return self._read_local(collection, query)

        try:
            result = self.remote.list_records(
                collection,
                page=1,
                per_page=max_items,
                skip_total=True,
                where=flt,
                sort=sort,
                start_after=start_after,
            )
        except RemoteError as e:
            if source is QuerySource.SERVER:
                raise
            logger.warning(f"Remote fetch of {collection} failed, reading the local cache: {e.message}")
            return self._read_local(collection, query)

        self._mirror(collection, result.items)
        logger.debug(f"Fetched {len(result.items)} record(s) of {collection} from the remote")
        return result.items

    def get_record_count(
        self,
        collection: str,
        *,
        where: WhereLike = None,
        source: Union[QuerySource, str] = QuerySource.ANY,
    ) -> int:
        """Number of records matching a filter."""
        source = QuerySource(source)
        flt = Filter.coerce(where)
        query = translate(flt, schema=self.store.get_schema(collection))

        if source is QuerySource.CACHE or (source is QuerySource.ANY and self.is_offline):
            return self._count_local(collection, query)

        try:
            result = self.remote.list_records(
                collection,
                page=1,
                per_page=1,
                skip_total=False,
                where=flt,
            )
        except RemoteError as e:
            if source is QuerySource.SERVER:
                raise
            logger.warning(f"Remote count of {collection} failed, counting the local cache: {e.message}")
            return self._count_local(collection, query)

        return result.total_items

    def _read_local(self, collection: str, query: TranslatedQuery) -> List[Dict[str, Any]]:
        try:
            return self.store.read(collection, query)
        except sqlite3.Error as e:
            logger.warning(f"Local read of {collection} failed: {e}")
            return []

    def _count_local(self, collection: str, query: TranslatedQuery) -> int:
        try:
            return self.store.count(collection, query)
        except sqlite3.Error as e:
            logger.warning(f"Local count of {collection} failed: {e}")
            return 0

    def _mirror(self, collection: str, items: List[Dict[str, Any]]) -> None:
        """Store fetched records and seed the table's resync time."""
        if not items:
            return
        with ErrorContext(f"Mirroring {len(items)} record(s) of {collection}"):
            if self.store.upsert(collection, items) is UpsertOutcome.DROPPED:
                return
            updated = [str(item["updated"]) for item in items if item.get("updated")]
            if updated:
                self.store.seed_last_sync_time(collection, max(updated))

    def _fetch_for_resync(self, collection: str, where: WhereLike, sort: SortSpec) -> List[Dict[str, Any]]:
        return self.get_records(
            collection,
            max_items=self.config.default_max_items,
            where=where,
            sort=sort,
            source=QuerySource.SERVER,
        )

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def create_record(
        self,
        collection: str,
        fields: Mapping[str, Any],
        record_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a record locally and queue it for the remote.

        Returns:
            The locally stored record, including its generated id
        """
        record_id = record_id or generate_record_id()
        now = utc_now_string()
        record = {"id": record_id, "created": now, "updated": now, **fields}

        with ErrorContext(f"Caching new {collection} record {record_id}"):
            self.store.upsert(collection, [record])

        self.queue.enqueue(OperationType.INSERT, collection, record_id, fields)
        self._drain_if_online()
        return record

    def update_record(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Update a cached record and queue the change for the remote.

        Returns:
            The updated cached record, or None if it was not cached
        """
        record = None
        with ErrorContext(f"Updating cached {collection} record {record_id}"):
            cached = self.store.get_record(collection, record_id)
            if cached is not None:
                record = {**cached, **fields, "id": record_id, "updated": utc_now_string()}
                record.pop("_downloaded", None)
                self.store.upsert(collection, [record])

        self.queue.enqueue(OperationType.UPDATE, collection, record_id, fields)
        self._drain_if_online()
        return record

    def delete_record(self, collection: str, record_id: str) -> None:
        """Delete a cached record and queue the deletion for the remote."""
        with ErrorContext(f"Deleting cached {collection} record {record_id}"):
            self.store.delete_record(collection, record_id)

        self.queue.enqueue(OperationType.DELETE, collection, record_id)
        self._drain_if_online()

    def queue_operation(
        self,
        operation_type: Union[OperationType, str],
        collection: str,
        id_to_modify: Optional[str] = None,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """Queue a raw mutation without touching the local mirror."""
        return self.queue.enqueue(operation_type, collection, id_to_modify, fields)

    def dequeue_cached_operations(self) -> int:
        """Replay queued mutations now. Returns the number removed from the queue."""
        return self.queue.drain()

    def _drain_if_online(self) -> None:
        if self.is_online:
            self.queue.drain()

    # =========================================================================
    # SYNC & AUTH
    # =========================================================================

    def reconcile(self) -> List[str]:
        """Drain the queue, then pull remote changes. Run after each healthy check."""
        self.queue.drain()
        return self.resync.resync_all()

    def refresh_auth(self) -> bool:
        """
        Refresh the remote auth token.

        Returns:
            True if refreshed, False if the remote was unreachable

        Raises:
            RemoteError: For any non-network failure
        """
        try:
            self.remote.auth_refresh()
        except RemoteError as e:
            if e.is_network_error:
                logger.info("Remote unreachable, auth refresh skipped")
                return False
            raise
        return True

    def try_refresh_auth(self) -> bool:
        """
        Refresh the auth token if one is stored; forget it if the remote rejects it.

        Returns:
            True if the token was refreshed
        """
        if not self.remote.token_valid:
            return False
        try:
            return self.refresh_auth()
        except RemoteError as e:
            if e.status in AUTH_REJECTED_STATUSES:
                logger.warning(f"Auth token rejected ({e.status}), clearing it")
                self.remote.clear_auth()
                return False
            raise

    # =========================================================================
    # MAINTENANCE & STATUS
    # =========================================================================

    def drop_all_tables(self) -> List[str]:
        """Evict every cached collection. Queued mutations are kept."""
        return self.store.drop_all_tables()

    def force_offline(self) -> None:
        self.connection.force_offline()

    def get_status(self) -> Dict[str, Any]:
        """
        Get comprehensive status information.

        Returns:
            Dict with connection, queue and cache details
        """
        drain = self.queue.state
        return {
            "connection": self.connection.get_status_display(),
            "is_online": self.is_online,
            "pending_operations": self.queue.pending_count(),
            "queue": {
                "is_draining": drain.is_draining,
                "last_drain": drain.last_drain.isoformat() if drain.last_drain else None,
                "total_replayed": drain.total_replayed,
                "failed_count": drain.failed_count,
                "last_error": drain.last_error,
            },
            "cached_tables": self.store.list_tables(),
            "last_sync_times": self.store.get_last_sync_times(),
        }

    def close(self) -> None:
        """Stop monitoring and close the database."""
        try:
            self.connection.stop_monitoring()
        finally:
            self.store.close()
        logger.info("OfflineCache closed")
