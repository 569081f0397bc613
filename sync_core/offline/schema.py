# =============================================================================
# sync_core/offline/schema.py
# Table Schema Inference and Value Encoding
# =============================================================================
"""
Schema descriptors for mirrored collections.

A mirrored table's schema is computed once from a sample record and then
treated as immutable. SQLite has no boolean or array types, so those values
are stored in prefixed columns and decoded on the way out:

    {"done": True}        ->  _offline_bool_done INTEGER   (1 / 0)
    {"tags": ["a", "b"]}  ->  _offline_json_tags TEXT      ('["a", "b"]')
"""

from __future__ import annotations
import json
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

BOOL_PREFIX = "_offline_bool_"
JSON_PREFIX = "_offline_json_"

# Remote-assigned id/created/updated plus the local refresh timestamp
SYSTEM_COLUMNS = ("id", "created", "updated", "_downloaded")


class ValueKind(Enum):
    """Runtime kind of a record value."""
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOL = "BOOL"
    JSON = "JSON"
    NULL = "NULL"


def value_kind(value: Any) -> Optional[ValueKind]:
    """
    Classify a value.

    Returns:
        The ValueKind, or None for kinds that cannot be stored
    """
    if value is None:
        return ValueKind.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, (bool, np.bool_)):
        return ValueKind.BOOL
    if isinstance(value, (int, np.integer)):
        return ValueKind.INTEGER
    if isinstance(value, (float, np.floating)):
        return ValueKind.NULL if pd.isna(value) else ValueKind.REAL
    if isinstance(value, (str, datetime, date)):
        return ValueKind.TEXT
    if isinstance(value, (list, tuple, dict, np.ndarray)):
        return ValueKind.JSON
    return None


def to_utc_string(value: datetime) -> str:
    """Format a datetime the way the backend does: 2024-01-01 00:00:00.000Z"""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%d %H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def utc_now_string() -> str:
    return to_utc_string(datetime.now(timezone.utc))


def _json_default(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, datetime):
        return to_utc_string(value)
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_json(value: Any) -> str:
    """Serialize a list/map value to the JSON text stored in json columns."""
    if isinstance(value, np.ndarray):
        value = value.tolist()
    return json.dumps(value, default=_json_default)


def to_python(value: Any) -> Any:
    """Unwrap numpy scalars and NaN so sqlite3 can bind the value."""
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


@dataclass(frozen=True)
class ColumnSpec:
    """One record field and how it is stored."""
    field: str
    kind: ValueKind

    @property
    def column_name(self) -> str:
        if self.kind is ValueKind.BOOL:
            return BOOL_PREFIX + self.field
        if self.kind is ValueKind.JSON:
            return JSON_PREFIX + self.field
        return self.field

    @property
    def sql_type(self) -> str:
        if self.kind in (ValueKind.BOOL, ValueKind.INTEGER):
            return "INTEGER"
        if self.kind is ValueKind.REAL:
            return "REAL"
        return "TEXT"

    def encode(self, value: Any) -> Any:
        """Convert a record value to what is bound into this column."""
        value = to_python(value)
        if value is None:
            return None
        if self.kind is ValueKind.BOOL:
            return 1 if value else 0
        if self.kind is ValueKind.JSON:
            return value if isinstance(value, str) else encode_json(value)
        if isinstance(value, datetime):
            return to_utc_string(value)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, (list, tuple, dict)):
            return encode_json(value)
        return value


def quote_identifier(name: str) -> str:
    """Quote a table/column name for SQLite."""
    return '"' + name.replace('"', '""') + '"'


def decode_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Reverse the bool/json column encoding of a stored row."""
    record: Dict[str, Any] = {}
    for key in row.keys():
        value = row[key]
        if key.startswith(BOOL_PREFIX):
            record[key[len(BOOL_PREFIX):]] = None if value is None else value == 1
        elif key.startswith(JSON_PREFIX):
            record[key[len(JSON_PREFIX):]] = None if value is None else json.loads(value)
        else:
            record[key] = value
    return record


@dataclass(frozen=True)
class TableSchema:
    """
    Immutable schema descriptor of a mirrored table.

    Attributes:
        table: Table (collection) name
        columns: Ordered field columns, system columns excluded
    """
    table: str
    columns: Tuple[ColumnSpec, ...] = ()

    @classmethod
    def infer(cls, table: str, sample: Mapping[str, Any]) -> TableSchema:
        """
        Infer one column per field of a sample record.

        Null values and unrecognized kinds are logged and skipped.
        """
        columns: List[ColumnSpec] = []
        for field_name, value in sample.items():
            if field_name in SYSTEM_COLUMNS:
                continue
            kind = value_kind(value)
            if kind is None:
                logger.error(f"Unknown type {type(value).__name__} for {table}.{field_name}, skipping column")
                continue
            if kind is ValueKind.NULL:
                logger.debug(f"Cannot infer a type for null field {table}.{field_name}, skipping column")
                continue
            columns.append(ColumnSpec(field_name, kind))
        return cls(table, tuple(columns))

    @classmethod
    def from_table_info(cls, table: str, table_info: Iterable[Mapping[str, Any]]) -> TableSchema:
        """Rebuild a descriptor from PRAGMA table_info rows of an existing table."""
        columns: List[ColumnSpec] = []
        for info in table_info:
            name = info["name"]
            declared = (info["type"] or "").upper()
            if name in SYSTEM_COLUMNS:
                continue
            if name.startswith(BOOL_PREFIX):
                columns.append(ColumnSpec(name[len(BOOL_PREFIX):], ValueKind.BOOL))
            elif name.startswith(JSON_PREFIX):
                columns.append(ColumnSpec(name[len(JSON_PREFIX):], ValueKind.JSON))
            elif declared == "INTEGER":
                columns.append(ColumnSpec(name, ValueKind.INTEGER))
            elif declared == "REAL":
                columns.append(ColumnSpec(name, ValueKind.REAL))
            else:
                columns.append(ColumnSpec(name, ValueKind.TEXT))
        return cls(table, tuple(columns))

    @property
    def column_names(self) -> List[str]:
        """All stored column names, system columns first."""
        return list(SYSTEM_COLUMNS) + [c.column_name for c in self.columns]

    @property
    def field_names(self) -> List[str]:
        return [c.field for c in self.columns]

    def column_for(self, name: str) -> Optional[ColumnSpec]:
        """Look a column up by field name or by stored column name."""
        for column in self.columns:
            if name in (column.field, column.column_name):
                return column
        return None

    def unknown_fields(self, record: Mapping[str, Any]) -> List[str]:
        """Fields of a record that have no column (null values are ignored)."""
        known = set(self.field_names)
        return [
            key for key, value in record.items()
            if key not in SYSTEM_COLUMNS and key not in known and to_python(value) is not None
        ]

    def create_table_sql(self) -> str:
        definitions = [
            "id TEXT PRIMARY KEY",
            "created TEXT",
            "updated TEXT",
            "_downloaded TEXT",
        ]
        definitions += [f"{quote_identifier(c.column_name)} {c.sql_type}" for c in self.columns]
        return f"CREATE TABLE {quote_identifier(self.table)} ({', '.join(definitions)})"

    def encode_row(self, record: Mapping[str, Any], downloaded: str) -> List[Any]:
        """Values for one INSERT row, in column_names order."""
        row = [
            to_python(record.get("id")),
            self._system_value(record.get("created")),
            self._system_value(record.get("updated")),
            downloaded,
        ]
        row += [column.encode(record.get(column.field)) for column in self.columns]
        return row

    @staticmethod
    def _system_value(value: Any) -> Any:
        if isinstance(value, datetime):
            return to_utc_string(value)
        return to_python(value)
