# =============================================================================
# sync_core/offline/resync.py
# Incremental Pull of Remote Changes
# =============================================================================

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import logging

from sync_core.errors import RemoteError, safe_execute
from sync_core.logging import LogContext
from sync_core.offline.local_store import LocalStore
from sync_core.offline.query_translator import SortSpec, WhereLike

logger = logging.getLogger(__name__)

# (table, last_update) -> filter for records newer than last_update, or None to skip
GenerateWhere = Callable[[str, str], WhereLike]

# (collection, where, sort) -> records; must read from the remote and refresh the mirror
FetchRemote = Callable[[str, WhereLike, SortSpec], List[Dict[str, Any]]]


class ResyncCoordinator:
    """
    Pulls records changed since each table's last sync time.

    Every table listed in _last_sync_times is asked for a filter through
    ``generate_where``; tables for which it returns None are skipped.
    """

    SORT = SortSpec("updated", descending=True)

    def __init__(
        self,
        store: LocalStore,
        fetch_remote: FetchRemote,
        generate_where: Optional[GenerateWhere] = None,
        on_cache_updated: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.fetch_remote = fetch_remote
        self.generate_where = generate_where
        self.on_cache_updated = on_cache_updated

    def resync_all(self) -> List[str]:
        """
        Run one resync pass.

        Returns:
            Names of the tables that received records
        """
        if self.generate_where is None:
            return []

        updated_tables: List[str] = []
        with LogContext(logger, "Resyncing cached tables", level=logging.DEBUG):
            for table, last_update in self.store.get_last_sync_times().items():
                where = self.generate_where(table, last_update)
                if where is None:
                    continue

                try:
                    items = self.fetch_remote(table, where, self.SORT)
                except RemoteError as e:
                    logger.warning(f"Resync of {table} failed: {e.message}")
                    if e.is_network_error:
                        break
                    continue

                if not items:
                    continue

                # Bookkeeping follows the last item of the page as fetched
                last_item_updated = items[-1].get("updated")
                if last_item_updated:
                    self.store.set_last_sync_time(table, str(last_item_updated))
                updated_tables.append(table)
                logger.info(f"Resynced {len(items)} record(s) into {table}")

        if updated_tables and self.on_cache_updated is not None:
            safe_execute(self.on_cache_updated, error_message="Error in local cache updated listener")
        return updated_tables
