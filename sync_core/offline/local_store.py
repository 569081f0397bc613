# =============================================================================
# sync_core/offline/local_store.py
# Local SQLite Mirror of Remote Collections
# =============================================================================
"""
LocalStore - SQLite storage that mirrors remote collections.

Features:
- Lazy table creation with a schema inferred from the first record
- Drop-and-recreate when a record no longer fits the cached schema
- Declared (optionally unique) indexes per table
- Reserved bookkeeping tables for the operation queue and resync times
- Thread-local connections, per-table locks around DDL and upserts
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union
import logging

import pandas as pd

from sync_core.errors import StoreError
from sync_core.offline.query_translator import TranslatedQuery
from sync_core.offline.schema import (
    BOOL_PREFIX,
    JSON_PREFIX,
    SYSTEM_COLUMNS,
    TableSchema,
    decode_row,
    quote_identifier,
    utc_now_string,
)

logger = logging.getLogger(__name__)

QUEUE_TABLE = "_operation_queue"
QUEUE_PARAMS_TABLE = "_operation_queue_params"
LAST_SYNC_TABLE = "_last_sync_times"

RESERVED_TABLES = (QUEUE_TABLE, QUEUE_PARAMS_TABLE, LAST_SYNC_TABLE)

# Lowest SQLITE_MAX_VARIABLE_NUMBER still found in the wild is 999
MAX_BOUND_PARAMETERS = 999


class UpsertOutcome(Enum):
    """Result of a schema check or upsert."""
    OK = "ok"
    DROPPED = "dropped"     # Record did not fit the schema; table was dropped


class IndexInstruction(NamedTuple):
    name: str
    unique: bool
    columns: List[str]


IndexInstructions = Mapping[str, Sequence[Union[IndexInstruction, tuple]]]


def is_reserved(table: str) -> bool:
    return table in RESERVED_TABLES or table.startswith("sqlite_")


class LocalStore:
    """
    SQLite mirror of remote collections plus the queue/resync bookkeeping.

    Usage:
        store = LocalStore(Path("local_data/offline_cache"))
        store.upsert("notes", records)
        rows = store.read("notes", translate(("status = ?", [True])))
    """

    SCHEMA = {
        QUEUE_TABLE: f"""
            CREATE TABLE IF NOT EXISTS {QUEUE_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation_type TEXT NOT NULL,
                created INTEGER NOT NULL,
                collection_name TEXT NOT NULL,
                id_to_modify TEXT
            )
        """,
        QUEUE_PARAMS_TABLE: f"""
            CREATE TABLE IF NOT EXISTS {QUEUE_PARAMS_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                operation_id INTEGER NOT NULL REFERENCES {QUEUE_TABLE}(id),
                param_key TEXT NOT NULL,
                param_value TEXT,
                param_type TEXT NOT NULL
            )
        """,
        LAST_SYNC_TABLE: f"""
            CREATE TABLE IF NOT EXISTS {LAST_SYNC_TABLE} (
                table_name TEXT PRIMARY KEY,
                last_update TEXT NOT NULL
            )
        """,
    }

    def __init__(
        self,
        db_path: Union[str, Path],
        index_instructions: Optional[IndexInstructions] = None,
    ):
        """
        Args:
            db_path: SQLite database file (parent directories are created)
            index_instructions: {table: [(index_name, unique, [columns])]}
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.index_instructions: Dict[str, List[IndexInstruction]] = {
            table: [IndexInstruction(*instruction) for instruction in instructions]
            for table, instructions in (index_instructions or {}).items()
        }

        self._local = threading.local()
        self._connections: List[Tuple[threading.Thread, sqlite3.Connection]] = []
        self._connections_lock = threading.Lock()
        self._generation = 0

        self._schemas: Dict[str, TableSchema] = {}
        self._table_locks: Dict[str, threading.RLock] = {}
        self._table_locks_guard = threading.Lock()

        self._initialized = False
        self.initialize()

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        connection = getattr(self._local, "connection", None)
        if connection is None or getattr(self._local, "generation", None) != self._generation:
            connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30,
            )
            connection.row_factory = sqlite3.Row
            self._local.connection = connection
            self._local.generation = self._generation
            with self._connections_lock:
                self._prune_dead_connections()
                self._connections.append((threading.current_thread(), connection))
        return connection

    def _prune_dead_connections(self) -> None:
        """Close connections whose owning thread has exited. Caller holds _connections_lock."""
        alive = []
        for thread, connection in self._connections:
            if thread.is_alive():
                alive.append((thread, connection))
                continue
            try:
                connection.close()
            except sqlite3.Error as e:
                logger.debug(f"Error closing connection of finished thread {thread.name}: {e}")
        self._connections = alive

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        conn = self._get_connection()
        return conn.execute(sql, list(params or [])).fetchall()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a raw SQL statement in its own transaction."""
        with self.transaction() as conn:
            return conn.execute(sql, list(params or [])).rowcount

    def initialize(self) -> None:
        """Create the reserved bookkeeping tables."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, ddl in self.SCHEMA.items():
                conn.execute(ddl)
                logger.debug(f"Created/verified table: {table_name}")

        self._initialized = True
        logger.info(f"Local store initialized at: {self.db_path}")

    def close(self) -> None:
        """Close every connection opened by this store, from any thread."""
        with self._connections_lock:
            for _, connection in self._connections:
                try:
                    connection.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
            self._generation += 1
        self._local = threading.local()

    # =========================================================================
    # SCHEMA MANAGEMENT
    # =========================================================================

    def table_lock(self, table: str) -> threading.RLock:
        """Per-table lock serializing DDL, upserts and drops."""
        with self._table_locks_guard:
            lock = self._table_locks.get(table)
            if lock is None:
                lock = self._table_locks[table] = threading.RLock()
            return lock

    def table_exists(self, table: str) -> bool:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table],
        )
        return bool(rows)

    def list_tables(self, include_reserved: bool = False) -> List[str]:
        rows = self.query("SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        names = [row["name"] for row in rows]
        if include_reserved:
            return names
        return [name for name in names if not is_reserved(name)]

    def get_schema(self, table: str) -> Optional[TableSchema]:
        """Cached schema of a mirror table, introspected on first use."""
        schema = self._schemas.get(table)
        if schema is not None:
            return schema

        table_info = self.query(f"PRAGMA table_info({quote_identifier(table)})")
        if not table_info:
            return None
        schema = TableSchema.from_table_info(table, table_info)
        self._schemas[table] = schema
        return schema

    def ensure_schema(self, table: str, sample: Mapping[str, Any]) -> UpsertOutcome:
        """
        Make sure a mirror table exists and that the sample fits it.

        Creates the table (and its declared indexes) from the sample when it
        does not exist. Drops it when the sample carries a field the cached
        schema does not know.

        Returns:
            UpsertOutcome.OK or UpsertOutcome.DROPPED
        """
        if is_reserved(table):
            raise StoreError("Cannot mirror records into a reserved table", table=table)

        with self.table_lock(table):
            schema = self.get_schema(table)
            if schema is None:
                schema = TableSchema.infer(table, sample)
                with self.transaction() as conn:
                    conn.execute(schema.create_table_sql())
                self._schemas[table] = schema
                logger.info(f"Created table {table} with columns {schema.column_names}")
                self._create_indexes(schema)
                return UpsertOutcome.OK

            unknown = schema.unknown_fields(sample)
            if unknown:
                logger.warning(
                    f"Fields {unknown} are not in the schema of {table}, dropping the table"
                )
                self._drop(table)
                return UpsertOutcome.DROPPED
            return UpsertOutcome.OK

    def _create_indexes(self, schema: TableSchema) -> None:
        """Create the declared indexes of a freshly created table. Never fatal."""
        for name, unique, columns in self.index_instructions.get(schema.table, []):
            resolved, missing = [], []
            for column in columns:
                if column in SYSTEM_COLUMNS:
                    resolved.append(column)
                    continue
                spec = schema.column_for(column)
                if spec is None:
                    missing.append(column)
                else:
                    resolved.append(spec.column_name)

            if missing:
                logger.error(
                    f"Unable to create index {name} on {schema.table}({', '.join(columns)}), "
                    f"could not find all columns: {missing}"
                )
                continue

            sql = (
                f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {quote_identifier(name)} "
                f"ON {quote_identifier(schema.table)} ({', '.join(quote_identifier(c) for c in resolved)})"
            )
            try:
                with self.transaction() as conn:
                    conn.execute(sql)
                logger.debug(f"Created index {name} on {schema.table}")
            except sqlite3.Error as e:
                logger.error(f"Error creating index {name} on {schema.table}: {e}")

    def _drop(self, table: str) -> None:
        with self.table_lock(table):
            with self.transaction() as conn:
                conn.execute(f"DROP TABLE IF EXISTS {quote_identifier(table)}")
                conn.execute(f"DELETE FROM {LAST_SYNC_TABLE} WHERE table_name = ?", [table])
            self._schemas.pop(table, None)
        logger.info(f"Dropped table {table}")

    def drop_table(self, table: str) -> None:
        """Drop a mirror table and forget its resync time."""
        if is_reserved(table):
            raise StoreError("Reserved tables cannot be dropped", table=table)
        self._drop(table)

    def drop_all_tables(self) -> List[str]:
        """
        Drop every mirror table, keeping the reserved ones, then VACUUM.

        Returns:
            Names of the dropped tables
        """
        dropped = self.list_tables()
        for table in dropped:
            self._drop(table)
        self._get_connection().execute("VACUUM")
        logger.info(f"Dropped {len(dropped)} cached table(s)")
        return dropped

    # =========================================================================
    # RECORDS
    # =========================================================================

    def upsert(self, table: str, records: Iterable[Mapping[str, Any]]) -> UpsertOutcome:
        """
        Insert or replace a batch of records.

        The schema comes from the first record. If any record carries a field
        the schema does not know, the table is dropped instead.

        Returns:
            UpsertOutcome.OK or UpsertOutcome.DROPPED
        """
        records = [record for record in records if record.get("id") is not None]
        if not records:
            return UpsertOutcome.OK

        with self.table_lock(table):
            if self.ensure_schema(table, records[0]) is UpsertOutcome.DROPPED:
                return UpsertOutcome.DROPPED

            schema = self._schemas[table]
            for record in records[1:]:
                unknown = schema.unknown_fields(record)
                if unknown:
                    logger.warning(
                        f"Record {record.get('id')} has fields {unknown} not in the schema of "
                        f"{table}, dropping the table"
                    )
                    self._drop(table)
                    return UpsertOutcome.DROPPED

            downloaded = utc_now_string()
            columns = schema.column_names
            row_sql = "(" + ", ".join("?" for _ in columns) + ")"
            prefix = (
                f"INSERT OR REPLACE INTO {quote_identifier(table)} "
                f"({', '.join(quote_identifier(c) for c in columns)}) VALUES "
            )
            rows = [schema.encode_row(record, downloaded) for record in records]
            per_statement = max(1, MAX_BOUND_PARAMETERS // len(columns))

            try:
                with self.transaction() as conn:
                    for start in range(0, len(rows), per_statement):
                        chunk = rows[start:start + per_statement]
                        params = [value for row in chunk for value in row]
                        conn.execute(prefix + ", ".join(row_sql for _ in chunk), params)
            except sqlite3.OperationalError as e:
                if "has no column" not in str(e):
                    raise
                logger.warning(f"Schema of {table} is out of date ({e}), dropping the table")
                self._drop(table)
                return UpsertOutcome.DROPPED

        logger.debug(f"Upserted {len(rows)} record(s) into {table}")
        return UpsertOutcome.OK

    def read(self, table: str, query: Optional[TranslatedQuery] = None) -> List[Dict[str, Any]]:
        """Decoded rows matching a translated query; empty if the table is absent."""
        if not self.table_exists(table):
            return []
        sql = f"SELECT * FROM {quote_identifier(table)}"
        params: List[Any] = []
        if query is not None and query.sql:
            sql += " " + query.sql
            params = query.params
        return [decode_row(row) for row in self.query(sql, params)]

    def count(self, table: str, query: Optional[TranslatedQuery] = None) -> int:
        """Number of rows matching a translated query; 0 if the table is absent."""
        if not self.table_exists(table):
            return 0
        sql = f"SELECT COUNT(*) FROM {quote_identifier(table)}"
        params: List[Any] = []
        if query is not None and query.sql:
            sql += " " + query.sql
            params = query.params
        return self.query(sql, params)[0][0]

    def get_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        if not self.table_exists(table):
            return None
        rows = self.query(f"SELECT * FROM {quote_identifier(table)} WHERE id = ?", [record_id])
        return decode_row(rows[0]) if rows else None

    def delete_record(self, table: str, record_id: str) -> bool:
        """Delete one cached row. Returns True if a row was removed."""
        with self.table_lock(table):
            if not self.table_exists(table):
                return False
            deleted = self.execute(
                f"DELETE FROM {quote_identifier(table)} WHERE id = ?", [record_id]
            )
        return deleted > 0

    def to_dataframe(self, table: str, query: Optional[TranslatedQuery] = None) -> pd.DataFrame:
        """
        Load a mirror table into a pandas DataFrame.

        Bool and JSON columns are decoded and renamed back to their fields.
        """
        if not self.table_exists(table):
            return pd.DataFrame()

        sql = f"SELECT * FROM {quote_identifier(table)}"
        params: List[Any] = []
        if query is not None and query.sql:
            sql += " " + query.sql
            params = query.params

        df = pd.read_sql_query(sql, self._get_connection(), params=params)
        renames = {}
        for column in df.columns:
            if column.startswith(BOOL_PREFIX):
                df[column] = df[column].map(lambda v: None if pd.isna(v) else v == 1)
                renames[column] = column[len(BOOL_PREFIX):]
            elif column.startswith(JSON_PREFIX):
                df[column] = df[column].map(lambda v: None if pd.isna(v) else json.loads(v))
                renames[column] = column[len(JSON_PREFIX):]
        return df.rename(columns=renames)

    # =========================================================================
    # LAST SYNC TIMES
    # =========================================================================

    def get_last_sync_times(self) -> Dict[str, str]:
        rows = self.query(f"SELECT table_name, last_update FROM {LAST_SYNC_TABLE}")
        return {row["table_name"]: row["last_update"] for row in rows}

    def set_last_sync_time(self, table: str, last_update: str) -> None:
        self.execute(
            f"INSERT OR REPLACE INTO {LAST_SYNC_TABLE} (table_name, last_update) VALUES (?, ?)",
            [table, last_update],
        )

    def seed_last_sync_time(self, table: str, last_update: str) -> bool:
        """Record a first sync time if the table has none. Returns True if inserted."""
        inserted = self.execute(
            f"INSERT OR IGNORE INTO {LAST_SYNC_TABLE} (table_name, last_update) VALUES (?, ?)",
            [table, last_update],
        )
        return inserted > 0
