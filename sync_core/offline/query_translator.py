# =============================================================================
# sync_core/offline/query_translator.py
# Filter / Sort / Cursor Translation (SQLite and PocketBase)
# =============================================================================
"""
Query translation for the offline cache.

A query is a structured Filter (a conjunction of Clauses), an optional
SortSpec and an optional cursor (``start_after``, a partial record). The
same query renders two ways:

    translate(...)              -> SQL tail for the local SQLite mirror
    render_remote_filter(...)   -> PocketBase filter string

Callers may also pass the compact string form, which is parsed once:

    ("status = ? && created >= ?", [True, "2022-08-01"])

Every function here is pure.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, Union

from sync_core.errors import QueryTranslationError
from sync_core.offline.schema import (
    BOOL_PREFIX,
    JSON_PREFIX,
    TableSchema,
    ValueKind,
    encode_json,
    quote_identifier,
    to_python,
    to_utc_string,
    value_kind,
)

_CLAUSE_RE = re.compile(r"^\s*([\w.]+)\s*(!=|>=|<=|=|>|<)\s*\?\s*$")
_AND_TOKEN = "&&"


def stored_column(field: str, schema: Optional[TableSchema] = None, value: Any = None) -> str:
    """
    Column a field is stored in.

    The table's schema decides when the field is known to it. Otherwise the
    kind of a sample value does: bools and lists/maps live in prefixed columns.
    """
    if schema is not None:
        spec = schema.column_for(field)
        if spec is not None:
            return spec.column_name
    kind = value_kind(value)
    if kind is ValueKind.BOOL:
        return BOOL_PREFIX + field
    if kind is ValueKind.JSON:
        return JSON_PREFIX + field
    return field


class Operator(str, Enum):
    """Comparison operators shared by the local and remote renderings."""
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="


@dataclass(frozen=True)
class Clause:
    """One ``column op value`` comparison."""
    column: str
    operator: Operator
    value: Any = None

    def __post_init__(self):
        if not isinstance(self.operator, Operator):
            object.__setattr__(self, "operator", Operator(self.operator))

    @property
    def kind(self) -> ValueKind:
        return value_kind(self.value) or ValueKind.TEXT

    @property
    def local_column(self) -> str:
        """Stored column targeted by this clause, judged from its value."""
        return stored_column(self.column, value=self.value)


@dataclass(frozen=True)
class Filter:
    """Conjunction of clauses. An empty Filter matches everything."""
    clauses: Tuple[Clause, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.clauses)

    def __len__(self) -> int:
        return len(self.clauses)

    @classmethod
    def parse(cls, expression: str, params: Optional[Sequence[Any]] = None) -> Filter:
        """
        Parse ``"a = ? && b >= ?"`` with positional parameters.

        Raises:
            QueryTranslationError: Malformed clause or parameter count mismatch
        """
        params = list(params or [])
        if not expression or not expression.strip():
            if params:
                raise QueryTranslationError(
                    f"Empty filter given {len(params)} parameter(s)",
                    expression=expression,
                )
            return cls()

        parts = expression.split(_AND_TOKEN)
        if len(parts) != len(params):
            raise QueryTranslationError(
                f"Filter has {len(parts)} clause(s) but {len(params)} parameter(s)",
                expression=expression,
            )

        clauses = []
        for part, value in zip(parts, params):
            match = _CLAUSE_RE.match(part)
            if match is None:
                raise QueryTranslationError(
                    f"Unsupported filter clause: {part.strip()!r}",
                    expression=expression,
                )
            clauses.append(Clause(match.group(1), Operator(match.group(2)), value))
        return cls(tuple(clauses))

    @classmethod
    def coerce(cls, where: WhereLike) -> Filter:
        """Accept a Filter, a Clause, a list of Clauses, or (expression, params)."""
        if where is None:
            return cls()
        if isinstance(where, Filter):
            return where
        if isinstance(where, Clause):
            return cls((where,))
        if isinstance(where, str):
            return cls.parse(where, [])
        if isinstance(where, tuple) and len(where) == 2 and isinstance(where[0], str):
            return cls.parse(where[0], where[1])
        if isinstance(where, (list, tuple)) and all(isinstance(c, Clause) for c in where):
            return cls(tuple(where))
        raise QueryTranslationError(f"Cannot build a filter from {type(where).__name__}")

    def and_(self, clause: Clause) -> Filter:
        return Filter(self.clauses + (clause,))


WhereLike = Union[None, str, Filter, Clause, Tuple[str, Sequence[Any]], Iterable[Clause]]


@dataclass(frozen=True)
class SortSpec:
    column: str
    descending: bool = True

    @classmethod
    def coerce(cls, sort: Any) -> Optional[SortSpec]:
        """Accept a SortSpec, a (column, descending) tuple, or "-column"."""
        if sort is None or isinstance(sort, SortSpec):
            return sort
        if isinstance(sort, tuple) and len(sort) == 2:
            return cls(str(sort[0]), bool(sort[1]))
        if isinstance(sort, str) and sort:
            if sort.startswith("-"):
                return cls(sort[1:], True)
            return cls(sort.lstrip("+"), False)
        raise QueryTranslationError(f"Cannot build a sort from {sort!r}")


class QuerySource(Enum):
    """Where a read is served from."""
    SERVER = "server"   # Remote only, failures propagate
    CACHE = "cache"     # Local mirror only
    ANY = "any"         # Remote when online, mirror otherwise or on failure


class TranslatedQuery(NamedTuple):
    """SQL tail (WHERE ... ORDER BY ... LIMIT n) and its bound parameters."""
    sql: str
    params: List[Any]


# =============================================================================
# LOCAL (SQLITE) RENDERING
# =============================================================================

def bind_value(value: Any) -> Any:
    """Convert a filter or cursor value to a SQLite parameter."""
    value = to_python(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, datetime):
        return to_utc_string(value)
    if isinstance(value, date):
        return value.isoformat()
    if value_kind(value) is ValueKind.JSON:
        return encode_json(value)
    return value


def _render_clause(clause: Clause, schema: Optional[TableSchema] = None) -> Tuple[str, List[Any]]:
    column = quote_identifier(stored_column(clause.column, schema, clause.value))
    if clause.value is None and clause.operator is Operator.EQ:
        # Missing values are stored as NULL locally and "" remotely
        return f"({column} IS NULL OR {column} = ?)", [""]
    if clause.value is None and clause.operator is Operator.NE:
        return f"({column} IS NOT NULL AND {column} != ?)", [""]
    return f"{column} {clause.operator.value} ?", [bind_value(clause.value)]


def _cursor_value(sort: Optional[SortSpec], start_after: Mapping[str, Any]) -> Any:
    if sort is None:
        raise QueryTranslationError("start_after requires a sort")
    if sort.column not in start_after:
        raise QueryTranslationError(
            f"start_after is missing the sort column {sort.column!r}",
        )
    return start_after[sort.column]


def translate(
    where: WhereLike = None,
    sort: Any = None,
    start_after: Optional[Mapping[str, Any]] = None,
    limit: Optional[int] = None,
    schema: Optional[TableSchema] = None,
) -> TranslatedQuery:
    """
    Translate a query into the tail of a SQLite SELECT.

    Args:
        where: Filter in any form accepted by Filter.coerce
        sort: SortSpec, (column, descending) or "-column"
        start_after: Cursor record; rows strictly after it in sort order
        limit: Maximum number of rows
        schema: Schema of the target table, used to find prefixed
            bool/json columns; without it the value kinds decide

    Returns:
        TranslatedQuery(sql, params)

    Raises:
        QueryTranslationError: Malformed filter, or a cursor without a sort
    """
    flt = Filter.coerce(where)
    sort = SortSpec.coerce(sort)

    conditions: List[str] = []
    params: List[Any] = []
    for clause in flt.clauses:
        sql, bound = _render_clause(clause, schema)
        conditions.append(sql)
        params.extend(bound)

    sort_column = None
    if sort is not None:
        sample = start_after.get(sort.column) if start_after else None
        sort_column = quote_identifier(stored_column(sort.column, schema, sample))

    if start_after:
        value = _cursor_value(sort, start_after)
        op = "<" if sort.descending else ">"
        column = sort_column
        record_id = start_after.get("id")
        if record_id is not None:
            conditions.append(f'({column}, "id") {op} (?, ?)')
            params.extend([bind_value(value), str(record_id)])
        else:
            conditions.append(f"{column} {op} ?")
            params.append(bind_value(value))

    parts = []
    if conditions:
        parts.append("WHERE " + " AND ".join(conditions))
    if sort is not None:
        direction = "DESC" if sort.descending else "ASC"
        if sort.column == "id":
            parts.append(f"ORDER BY {sort_column} {direction}")
        else:
            # id breaks ties so cursor pages never overlap
            parts.append(f'ORDER BY {sort_column} {direction}, "id" {direction}')
    if limit is not None:
        parts.append(f"LIMIT {int(limit)}")

    return TranslatedQuery(" ".join(parts), params)


# =============================================================================
# REMOTE (POCKETBASE) RENDERING
# =============================================================================

def render_remote_value(value: Any) -> str:
    """Render a literal in PocketBase filter syntax."""
    value = to_python(value)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        text = to_utc_string(value)
    elif isinstance(value, date):
        text = value.isoformat()
    elif value_kind(value) is ValueKind.JSON:
        text = encode_json(value)
    else:
        text = str(value)
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


def render_remote_filter(
    where: WhereLike = None,
    sort: Any = None,
    start_after: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Render a query as a PocketBase filter.

    >>> render_remote_filter(("status = ? && created >= ?", [True, "2022-08-01"]))
    "status = true && created >= '2022-08-01'"

    Returns:
        The filter string, empty when there is nothing to filter on
    """
    flt = Filter.coerce(where)
    sort = SortSpec.coerce(sort)

    parts = [
        f"{c.column} {c.operator.value} {render_remote_value(c.value)}"
        for c in flt.clauses
    ]

    if start_after:
        value = render_remote_value(_cursor_value(sort, start_after))
        op = "<" if sort.descending else ">"
        record_id = start_after.get("id")
        if record_id is not None:
            parts.append(
                f"({sort.column} {op} {value} || "
                f"({sort.column} = {value} && id {op} {render_remote_value(str(record_id))}))"
            )
        else:
            parts.append(f"{sort.column} {op} {value}")

    return " && ".join(parts)


def render_remote_sort(sort: Any) -> Optional[str]:
    """``-column`` for descending, ``column`` for ascending."""
    sort = SortSpec.coerce(sort)
    if sort is None:
        return None
    return f"-{sort.column}" if sort.descending else sort.column
