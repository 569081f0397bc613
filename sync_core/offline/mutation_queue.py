# =============================================================================
# sync_core/offline/mutation_queue.py
# Durable FIFO Queue of Remote Mutations
# =============================================================================
"""
MutationQueue - persists INSERT/UPDATE/DELETE intents and replays them.

Features:
- Entries are written to SQLite before any remote attempt
- Strictly ordered replay (created, then id)
- Network failures leave the entry queued for the next drain
- Permanent failures discard the entry and the local cached row
- Reentrancy guard: concurrent drains never replay an entry twice
"""

from __future__ import annotations
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from sync_core.errors import QueueOperationError, RemoteError, handle_error
from sync_core.logging import LogContext
from sync_core.offline.local_store import QUEUE_PARAMS_TABLE, QUEUE_TABLE, LocalStore
from sync_core.offline.schema import ValueKind, encode_json, to_python, to_utc_string, value_kind
from sync_core.remote.base_client import RemoteClient

logger = logging.getLogger(__name__)


class OperationType(str, Enum):
    """Kinds of queued mutation."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class QueuedOperation:
    """A persisted, not yet acknowledged mutation."""
    id: int
    operation_type: str
    created: int                        # ms since epoch, ordering only
    collection_name: str
    id_to_modify: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DrainState:
    """Bookkeeping of the queue replay."""
    is_draining: bool = False
    last_drain: Optional[datetime] = None
    total_replayed: int = 0
    failed_count: int = 0
    last_error: Optional[str] = None


# =============================================================================
# PARAMETER SERIALIZATION
# =============================================================================

def serialize_param(value: Any) -> Optional[Tuple[str, Optional[str]]]:
    """
    Serialize a field value with a type tag.

    Returns:
        (param_type, param_value), or None if the value kind is unsupported
    """
    kind = value_kind(value)
    if kind is None:
        return None
    value = to_python(value)
    if kind is ValueKind.NULL:
        return "null", None
    if kind is ValueKind.BOOL:
        return "bool", "1" if value else "0"
    if kind is ValueKind.INTEGER:
        return "int", str(int(value))
    if kind is ValueKind.REAL:
        return "float", repr(float(value))
    if kind is ValueKind.JSON:
        return "json", encode_json(value)
    if isinstance(value, datetime):
        return "str", to_utc_string(value)
    if isinstance(value, date):
        return "str", value.isoformat()
    return "str", str(value)


def deserialize_param(param_type: str, param_value: Optional[str]) -> Any:
    """Inverse of serialize_param."""
    if param_type == "null" or param_value is None:
        return None
    if param_type == "bool":
        return param_value == "1"
    if param_type == "int":
        return int(param_value)
    if param_type == "float":
        return float(param_value)
    if param_type == "json":
        return json.loads(param_value)
    if param_type != "str":
        logger.warning(f"Unknown param type {param_type!r}, keeping the raw text")
    return param_value


class MutationQueue:
    """
    Durable queue of remote mutations.

    Usage:
        queue = MutationQueue(store, remote)
        queue.enqueue(OperationType.UPDATE, "notes", "abc123", {"title": "x"})
        queue.drain()
    """

    def __init__(self, store: LocalStore, remote: RemoteClient):
        self.store = store
        self.remote = remote
        self.state = DrainState()
        self._drain_lock = threading.Lock()

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    def enqueue(
        self,
        operation_type: Any,
        collection: str,
        id_to_modify: Optional[str] = None,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """
        Persist a mutation. Nothing is sent to the remote here.

        Args:
            operation_type: OperationType or its name
            collection: Target collection
            id_to_modify: Record id (required for UPDATE and DELETE)
            fields: Record fields; unsupported values are logged and omitted

        Returns:
            Id of the queue entry
        """
        try:
            op_type = OperationType(operation_type)
        except ValueError as e:
            raise QueueOperationError(
                f"Unknown operation type: {operation_type!r}",
                operation_type=str(operation_type),
                collection=collection,
            ) from e

        if op_type is not OperationType.INSERT and not id_to_modify:
            raise QueueOperationError(
                f"{op_type.value} requires the id of the record to modify",
                operation_type=op_type.value,
                collection=collection,
            )

        params = []
        for key, value in (fields or {}).items():
            serialized = serialize_param(value)
            if serialized is None:
                logger.error(
                    f"Unknown type {type(value).__name__} for {collection}.{key}, "
                    f"omitting it from the queued {op_type.value}"
                )
                continue
            param_type, param_value = serialized
            params.append((key, param_value, param_type))

        with self.store.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO {QUEUE_TABLE} "
                f"(operation_type, created, collection_name, id_to_modify) VALUES (?, ?, ?, ?)",
                [op_type.value, int(time.time() * 1000), collection, id_to_modify],
            )
            operation_id = cursor.lastrowid
            conn.executemany(
                f"INSERT INTO {QUEUE_PARAMS_TABLE} "
                f"(operation_id, param_key, param_value, param_type) VALUES (?, ?, ?, ?)",
                [(operation_id, key, value, tag) for key, value, tag in params],
            )

        logger.info(f"Queued {op_type.value} on {collection} (operation {operation_id})")
        return operation_id

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def pending(self, collection: Optional[str] = None) -> List[QueuedOperation]:
        """Queued operations in replay order."""
        sql = f"SELECT * FROM {QUEUE_TABLE}"
        params: List[Any] = []
        if collection is not None:
            sql += " WHERE collection_name = ?"
            params.append(collection)
        sql += " ORDER BY created ASC, id ASC"

        operations = [
            QueuedOperation(
                id=row["id"],
                operation_type=row["operation_type"],
                created=row["created"],
                collection_name=row["collection_name"],
                id_to_modify=row["id_to_modify"],
            )
            for row in self.store.query(sql, params)
        ]
        if not operations:
            return operations

        # Joined rather than IN (...) so a long queue stays under the bound-variable limit
        by_id = {operation.id: operation for operation in operations}
        param_sql = (
            f"SELECT p.operation_id, p.param_key, p.param_value, p.param_type "
            f"FROM {QUEUE_PARAMS_TABLE} p JOIN {QUEUE_TABLE} q ON q.id = p.operation_id"
        )
        if collection is not None:
            param_sql += " WHERE q.collection_name = ?"
        param_sql += " ORDER BY p.id"

        for row in self.store.query(param_sql, params):
            operation = by_id.get(row["operation_id"])
            if operation is None:
                # Enqueued after the operations were read
                continue
            operation.fields[row["param_key"]] = deserialize_param(
                row["param_type"], row["param_value"]
            )
        return operations

    def pending_count(self) -> int:
        return self.store.query(f"SELECT COUNT(*) FROM {QUEUE_TABLE}")[0][0]

    # =========================================================================
    # REPLAY
    # =========================================================================

    def drain(self) -> int:
        """
        Replay queued operations against the remote, oldest first.

        Returns immediately with 0 if another drain is running.

        Returns:
            Number of entries removed from the queue
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Queue drain already in progress, skipping")
            return 0

        try:
            self.state.is_draining = True
            operations = self.pending()
            if not operations:
                return 0

            drained = 0
            with LogContext(logger, f"Replaying {len(operations)} queued operation(s)"):
                for operation in operations:
                    if self._replay(operation):
                        drained += 1
            return drained
        finally:
            self.state.is_draining = False
            self.state.last_drain = datetime.now()
            self._drain_lock.release()

    def _replay(self, operation: QueuedOperation) -> bool:
        """Replay one entry. Returns True if the entry left the queue."""
        try:
            op_type = OperationType(operation.operation_type)
        except ValueError:
            logger.error(
                f"Discarding operation {operation.id} with unknown type {operation.operation_type!r}"
            )
            self._remove(operation.id)
            return True

        collection = operation.collection_name
        try:
            if op_type is OperationType.INSERT:
                self.remote.create_record(
                    collection, operation.fields, record_id=operation.id_to_modify or None
                )
            elif op_type is OperationType.UPDATE:
                self.remote.update_record(collection, operation.id_to_modify, operation.fields)
            else:
                self.remote.delete_record(collection, operation.id_to_modify)

        except RemoteError as e:
            self.state.failed_count += 1
            self.state.last_error = e.message
            if e.is_network_error:
                logger.warning(
                    f"Remote unreachable replaying operation {operation.id}, keeping it queued"
                )
                return False

            logger.error(
                f"Remote rejected {op_type.value} on {collection} "
                f"(record {operation.id_to_modify}): {e.message}. Discarding the operation"
            )
            if op_type is not OperationType.DELETE and operation.id_to_modify:
                self.store.delete_record(collection, operation.id_to_modify)
            self._remove(operation.id)
            return True

        except Exception as e:
            self.state.failed_count += 1
            self.state.last_error = str(e)
            handle_error(e, message=f"Unexpected error replaying operation {operation.id}")
            return False

        self._remove(operation.id)
        self.state.total_replayed += 1
        logger.debug(f"Replayed {op_type.value} on {collection} (operation {operation.id})")
        return True

    def _remove(self, operation_id: int) -> None:
        with self.store.transaction() as conn:
            conn.execute(f"DELETE FROM {QUEUE_PARAMS_TABLE} WHERE operation_id = ?", [operation_id])
            conn.execute(f"DELETE FROM {QUEUE_TABLE} WHERE id = ?", [operation_id])
