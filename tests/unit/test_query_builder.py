# =============================================================================
# tests/unit/test_query_builder.py
# Unit Tests for QueryBuilder
# =============================================================================

from unittest.mock import MagicMock

import pandas as pd
import pytest

from sync_core.errors import QueryTranslationError
from sync_core.offline.query_builder import QueryBuilder
from sync_core.offline.query_translator import Clause, Operator, QuerySource, SortSpec


@pytest.fixture
def mock_cache():
    cache = MagicMock()
    cache.get_records.return_value = [{"id": "1", "title": "x"}]
    cache.get_record_count.return_value = 3
    return cache


class TestWhere:
    """Test condition building"""

    @pytest.mark.parametrize("keyword,operator", [
        ("is_equal_to", Operator.EQ),
        ("is_not_equal_to", Operator.NE),
        ("is_greater_than", Operator.GT),
        ("is_less_than", Operator.LT),
        ("is_greater_than_or_equal_to", Operator.GE),
        ("is_less_than_or_equal_to", Operator.LE),
    ])
    def test_operator_keywords(self, mock_cache, keyword, operator):
        builder = QueryBuilder(mock_cache, "notes").where("a", **{keyword: 5})

        assert builder.filter.clauses == (Clause("a", operator, 5),)

    def test_is_null(self, mock_cache):
        builder = QueryBuilder(mock_cache, "notes").where("a", is_null=True).where("b", is_null=False)

        assert builder.filter.clauses == (Clause("a", Operator.EQ, None), Clause("b", Operator.NE, None))

    def test_equal_to_none_is_a_condition(self, mock_cache):
        builder = QueryBuilder(mock_cache, "notes").where("a", is_equal_to=None)

        assert builder.filter.clauses == (Clause("a", Operator.EQ, None),)

    def test_exactly_one_condition(self, mock_cache):
        builder = QueryBuilder(mock_cache, "notes")

        with pytest.raises(QueryTranslationError):
            builder.where("a")
        with pytest.raises(QueryTranslationError):
            builder.where("a", is_equal_to=1, is_less_than=2)

    def test_builders_are_immutable(self, mock_cache):
        base = QueryBuilder(mock_cache, "notes")
        narrowed = base.where("a", is_equal_to=1)

        assert len(base.filter) == 0
        assert len(narrowed.filter) == 1


class TestOrderBy:
    """Test sorting"""

    def test_order_by_defaults_descending(self, mock_cache):
        assert QueryBuilder(mock_cache, "notes").order_by("created").sort == SortSpec("created", True)

    def test_order_by_only_once(self, mock_cache):
        builder = QueryBuilder(mock_cache, "notes").order_by("created")

        with pytest.raises(QueryTranslationError):
            builder.order_by("updated")


class TestTerminals:
    """Test get / get_count / to_dataframe"""

    def test_get_passes_query_to_cache(self, mock_cache):
        builder = QueryBuilder(mock_cache, "notes").where("done", is_equal_to=True).order_by("created", False)

        builder.get(50, QuerySource.CACHE, {"created": "2024"})

        mock_cache.get_records.assert_called_once_with(
            "notes",
            max_items=50,
            where=builder.filter,
            sort=SortSpec("created", False),
            start_after={"created": "2024"},
            source=QuerySource.CACHE,
        )

    def test_get_count_defaults_to_any(self, mock_cache):
        assert QueryBuilder(mock_cache, "notes").get_count() == 3
        assert mock_cache.get_record_count.call_args.kwargs["source"] is QuerySource.ANY

    def test_source_accepts_string(self, mock_cache):
        QueryBuilder(mock_cache, "notes").get(source="server")

        assert mock_cache.get_records.call_args.kwargs["source"] is QuerySource.SERVER

    def test_to_dataframe(self, mock_cache):
        df = QueryBuilder(mock_cache, "notes").to_dataframe()

        assert isinstance(df, pd.DataFrame)
        assert list(df["title"]) == ["x"]
