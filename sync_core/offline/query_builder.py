# =============================================================================
# sync_core/offline/query_builder.py
# Fluent Query Builder over OfflineCache
# =============================================================================

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

import pandas as pd

from sync_core.errors import QueryTranslationError
from sync_core.offline.query_translator import Clause, Filter, Operator, QuerySource, SortSpec

if TYPE_CHECKING:
    from sync_core.offline.offline_cache import OfflineCache

_MISSING = object()


class QueryBuilder:
    """
    Immutable filter/sort builder; every call returns a new builder.

    Usage:
        cache.collection("notes").where("status", is_equal_to=True).order_by("created").get(50)
    """

    def __init__(
        self,
        cache: OfflineCache,
        collection: str,
        where: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
    ):
        self._cache = cache
        self.collection = collection
        self.filter = where or Filter()
        self.sort = sort

    def where(
        self,
        column: str,
        *,
        is_equal_to: Any = _MISSING,
        is_not_equal_to: Any = _MISSING,
        is_greater_than: Any = _MISSING,
        is_less_than: Any = _MISSING,
        is_greater_than_or_equal_to: Any = _MISSING,
        is_less_than_or_equal_to: Any = _MISSING,
        is_null: Any = _MISSING,
    ) -> QueryBuilder:
        """Add one condition on a column. Exactly one keyword must be given."""
        candidates = [
            (Operator.EQ, is_equal_to),
            (Operator.NE, is_not_equal_to),
            (Operator.GT, is_greater_than),
            (Operator.LT, is_less_than),
            (Operator.GE, is_greater_than_or_equal_to),
            (Operator.LE, is_less_than_or_equal_to),
        ]
        conditions = [(op, value) for op, value in candidates if value is not _MISSING]
        if is_null is not _MISSING:
            conditions.append((Operator.EQ if is_null else Operator.NE, None))

        if len(conditions) != 1:
            raise QueryTranslationError(
                f"where({column!r}) needs exactly one condition, got {len(conditions)}"
            )

        operator, value = conditions[0]
        return QueryBuilder(
            self._cache,
            self.collection,
            self.filter.and_(Clause(column, operator, value)),
            self.sort,
        )

    def order_by(self, column: str, descending: bool = True) -> QueryBuilder:
        if self.sort is not None:
            raise QueryTranslationError("order_by() can only be called once per query")
        return QueryBuilder(self._cache, self.collection, self.filter, SortSpec(column, descending))

    def get(
        self,
        max_items: Optional[int] = None,
        source: Any = None,
        start_after: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        return self._cache.get_records(
            self.collection,
            max_items=max_items,
            where=self.filter,
            sort=self.sort,
            start_after=start_after,
            source=self._source(source),
        )

    def get_count(self, source: Any = None) -> int:
        return self._cache.get_record_count(
            self.collection,
            where=self.filter,
            source=self._source(source),
        )

    def to_dataframe(
        self,
        max_items: Optional[int] = None,
        source: Any = None,
        start_after: Optional[Mapping[str, Any]] = None,
    ) -> pd.DataFrame:
        """Run get() and load the records into a DataFrame."""
        return pd.DataFrame(self.get(max_items, source, start_after))

    @staticmethod
    def _source(source: Any) -> QuerySource:
        return QuerySource.ANY if source is None else QuerySource(source)

    def __repr__(self) -> str:
        return f"QueryBuilder({self.collection!r}, clauses={len(self.filter)}, sort={self.sort})"
