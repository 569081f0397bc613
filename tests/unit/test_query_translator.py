# =============================================================================
# tests/unit/test_query_translator.py
# Unit Tests for filter / sort / cursor translation
# =============================================================================

import pytest
from datetime import datetime, timezone

from sync_core.errors import QueryTranslationError
from sync_core.offline.query_translator import (
    Clause,
    Filter,
    Operator,
    SortSpec,
    bind_value,
    render_remote_filter,
    render_remote_sort,
    translate,
)
from sync_core.offline.schema import TableSchema


class TestFilterParsing:
    """Test parsing of the compact string filter form"""

    def test_parse_pairs_clauses_with_params(self):
        flt = Filter.parse("status = ? && created >= ?", [True, "2022-08-01"])

        assert flt.clauses == (
            Clause("status", Operator.EQ, True),
            Clause("created", Operator.GE, "2022-08-01"),
        )

    def test_count_mismatch_raises(self):
        with pytest.raises(QueryTranslationError):
            Filter.parse("a = ? && b = ?", [1])

    def test_unsupported_clause_raises(self):
        with pytest.raises(QueryTranslationError):
            Filter.parse("a = 1", [1])

    def test_empty_expression_is_empty_filter(self):
        assert not Filter.parse("", [])

    def test_coerce_accepts_clause_list(self):
        flt = Filter.coerce([Clause("a", "=", 1)])

        assert flt.clauses[0].operator is Operator.EQ


class TestTranslate:
    """Test SQLite translation"""

    def test_bool_clause_targets_prefixed_column(self):
        query = translate(("status = ? && created >= ?", [True, "2022-08-01"]))

        assert query.sql == 'WHERE "_offline_bool_status" = ? AND "created" >= ?'
        assert query.params == [1, "2022-08-01"]

    def test_non_bool_clauses_untouched(self):
        query = translate(("a = ? && b != ? && c < ?", [1, "x", 2.5]))

        assert query.sql == 'WHERE "a" = ? AND "b" != ? AND "c" < ?'

    def test_every_bool_param_is_prefixed(self):
        query = translate(("a = ? && b = ? && c = ?", [False, 3, True]))

        assert '"_offline_bool_a"' in query.sql
        assert '"b" = ?' in query.sql
        assert '"_offline_bool_c"' in query.sql
        assert query.params == [0, 3, 1]

    def test_sort_and_limit(self):
        query = translate(None, SortSpec("created", descending=True), limit=50)

        assert query.sql == 'ORDER BY "created" DESC, "id" DESC LIMIT 50'
        assert query.params == []

    def test_descending_cursor(self):
        query = translate(None, ("created", True), {"created": "2024-01-01", "id": "abc"})

        assert query.sql.startswith('WHERE ("created", "id") < (?, ?)')
        assert query.params == ["2024-01-01", "abc"]

    def test_ascending_cursor_without_id(self):
        query = translate(("a = ?", [1]), ("created", False), {"created": "2024-01-01"})

        assert query.sql.startswith('WHERE "a" = ? AND "created" > ?')
        assert query.params == [1, "2024-01-01"]

    def test_cursor_requires_sort(self):
        with pytest.raises(QueryTranslationError):
            translate(None, None, {"created": "x"})

    def test_cursor_requires_sort_column_value(self):
        with pytest.raises(QueryTranslationError):
            translate(None, ("created", True), {"id": "abc"})

    def test_null_equality(self):
        query = translate([Clause("deleted", Operator.EQ, None)])

        assert query.sql == 'WHERE ("deleted" IS NULL OR "deleted" = ?)'
        assert query.params == [""]

    def test_list_and_map_clauses_target_json_columns(self):
        query = translate([Clause("tags", Operator.EQ, ["a"]), Clause("meta", Operator.NE, {"k": 1})])

        assert query.sql == 'WHERE "_offline_json_tags" = ? AND "_offline_json_meta" != ?'
        assert query.params == ['["a"]', '{"k": 1}']


class TestTranslateWithSchema:
    """Test column resolution through a table schema"""

    @pytest.fixture
    def schema(self):
        return TableSchema.infer("tasks", {"done": True, "tags": ["x"], "rank": 1})

    def test_sort_on_bool_field_uses_prefixed_column(self, schema):
        query = translate(sort=SortSpec("done", False), schema=schema)

        assert query.sql == 'ORDER BY "_offline_bool_done" ASC, "id" ASC'

    def test_cursor_on_bool_field(self, schema):
        query = translate(sort=SortSpec("done"), start_after={"done": True, "id": "b"}, schema=schema)

        assert query.sql == (
            'WHERE ("_offline_bool_done", "id") < (?, ?) ORDER BY "_offline_bool_done" DESC, "id" DESC'
        )
        assert query.params == [1, "b"]

    def test_bool_cursor_without_schema_uses_value_kind(self):
        query = translate(sort=SortSpec("done"), start_after={"done": False})

        assert query.sql == 'WHERE "_offline_bool_done" < ? ORDER BY "_offline_bool_done" DESC, "id" DESC'

    def test_null_clause_on_json_field(self, schema):
        query = translate([Clause("tags", Operator.EQ, None)], schema=schema)

        assert query.sql == 'WHERE ("_offline_json_tags" IS NULL OR "_offline_json_tags" = ?)'

    def test_unknown_and_system_fields_keep_their_names(self, schema):
        query = translate([Clause("created", Operator.GE, "2024"), Clause("rank", Operator.GT, 0)], schema=schema)

        assert query.sql == 'WHERE "created" >= ? AND "rank" > ?'


class TestBindValue:
    """Test parameter binding"""

    def test_bindings(self):
        assert bind_value(datetime(2024, 1, 1, tzinfo=timezone.utc)) == "2024-01-01 00:00:00.000Z"
        assert bind_value(["a", 1]) == '["a", 1]'
        assert bind_value({"k": "v"}) == '{"k": "v"}'
        assert bind_value(None) == ""
        assert bind_value(True) == 1
        assert bind_value(False) == 0
        assert bind_value("x") == "x"


class TestRemoteRendering:
    """Test PocketBase filter rendering"""

    def test_numbers(self):
        assert render_remote_filter(("abc = ? && xyz = ?", [1, 2])) == "abc = 1 && xyz = 2"

    def test_bool_and_string(self):
        rendered = render_remote_filter(("status = ? && created >= ?", [True, "2022-08-01"]))

        assert rendered == "status = true && created >= '2022-08-01'"

    def test_datetime(self):
        rendered = render_remote_filter(("created >= ?", [datetime(2024, 1, 1, tzinfo=timezone.utc)]))

        assert rendered == "created >= '2024-01-01 00:00:00.000Z'"

    def test_quotes_are_escaped(self):
        assert render_remote_filter(("title = ?", ["it's"])) == "title = 'it\\'s'"

    def test_cursor_without_id(self):
        rendered = render_remote_filter(None, ("status", False), {"status": datetime(2024, 1, 1, tzinfo=timezone.utc)})

        assert rendered == "status > '2024-01-01 00:00:00.000Z'"

    def test_cursor_with_id(self):
        rendered = render_remote_filter(("a = ?", [1]), ("created", True), {"created": "2024", "id": "x"})

        assert rendered == "a = 1 && (created < '2024' || (created = '2024' && id < 'x'))"

    def test_sort(self):
        assert render_remote_sort(("updated", True)) == "-updated"
        assert render_remote_sort(SortSpec("updated", descending=False)) == "updated"
        assert render_remote_sort(None) is None
