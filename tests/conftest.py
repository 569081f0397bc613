# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

from sync_core.config import CacheConfig
from sync_core.errors import RemoteError
from sync_core.offline.local_store import LocalStore
from sync_core.offline.offline_cache import OfflineCache
from sync_core.offline.query_translator import (
    Filter,
    Operator,
    SortSpec,
    render_remote_filter,
    render_remote_sort,
)
from sync_core.offline.schema import to_utc_string
from sync_core.remote.base_client import ListResult, RemoteClient


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def timestamp(seconds: int) -> str:
    """Backend-style UTC timestamp, BASE_TIME + seconds"""
    return to_utc_string(BASE_TIME + timedelta(seconds=seconds))


# =============================================================================
# FAKE REMOTE BACKEND
# =============================================================================

def _comparable(value):
    if isinstance(value, datetime):
        return to_utc_string(value)
    return value


def _matches(record: Dict[str, Any], flt: Filter) -> bool:
    for clause in flt.clauses:
        actual = _comparable(record.get(clause.column))
        expected = _comparable(clause.value)
        if expected is None:
            is_empty = actual in (None, "")
            if clause.operator is Operator.EQ and not is_empty:
                return False
            if clause.operator is Operator.NE and is_empty:
                return False
            continue
        if actual is None:
            return False
        op = clause.operator
        if op is Operator.EQ and not actual == expected:
            return False
        if op is Operator.NE and not actual != expected:
            return False
        if op is Operator.GT and not actual > expected:
            return False
        if op is Operator.GE and not actual >= expected:
            return False
        if op is Operator.LT and not actual < expected:
            return False
        if op is Operator.LE and not actual <= expected:
            return False
    return True


class FakeRemote(RemoteClient):
    """
    In-memory backend evaluating filters in Python.

    Attributes:
        collections: {collection: {id: record}}
        calls: Every call as (method, collection, details)
        errors: {method: exception or list of exceptions} raised on call
        health_status: Returned by health_check (or raised if an exception)
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.errors: Dict[str, Any] = {}
        self.health_status: Any = 200
        self.token_is_valid = True
        self.auth_cleared = False
        self._clock = 0
        self._next_id = 0

    def seed(self, collection: str, records: List[Dict[str, Any]]) -> None:
        """Add records, filling id/created/updated when missing"""
        table = self.collections.setdefault(collection, {})
        for record in records:
            record = dict(record)
            record.setdefault("id", self._new_id())
            stamp = self._tick()
            record.setdefault("created", stamp)
            record.setdefault("updated", stamp)
            table[record["id"]] = record

    def _tick(self) -> str:
        self._clock += 1
        return timestamp(self._clock)

    def _new_id(self) -> str:
        self._next_id += 1
        return f"remote{self._next_id:09d}"

    def _maybe_fail(self, method: str) -> None:
        error = self.errors.get(method)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

    def list_records(self, collection, *, page=1, per_page=500, skip_total=True,
                     where=None, sort=None, start_after=None) -> ListResult:
        self.calls.append(("list_records", collection, {
            "page": page,
            "per_page": per_page,
            "skip_total": skip_total,
            "filter": render_remote_filter(where, sort, start_after),
            "sort": render_remote_sort(sort),
        }))
        self._maybe_fail("list_records")

        flt = Filter.coerce(where)
        sort = SortSpec.coerce(sort)
        records = [r for r in self.collections.get(collection, {}).values() if _matches(r, flt)]
        if sort is not None:
            records.sort(key=lambda r: (r.get(sort.column), r["id"]), reverse=sort.descending)
            if start_after:
                key = (start_after[sort.column], start_after.get("id", ""))
                if sort.descending:
                    records = [r for r in records if (r.get(sort.column), r["id"]) < key]
                else:
                    records = [r for r in records if (r.get(sort.column), r["id"]) > key]

        start = (page - 1) * per_page
        items = [dict(r) for r in records[start:start + per_page]]
        return ListResult(items=items, total_items=-1 if skip_total else len(records))

    def create_record(self, collection, fields, record_id=None):
        self.calls.append(("create_record", collection, {"id": record_id, "fields": dict(fields)}))
        self._maybe_fail("create_record")
        stamp = self._tick()
        record = {"id": record_id or self._new_id(), "created": stamp, "updated": stamp, **fields}
        self.collections.setdefault(collection, {})[record["id"]] = record
        return dict(record)

    def update_record(self, collection, record_id, fields):
        self.calls.append(("update_record", collection, {"id": record_id, "fields": dict(fields)}))
        self._maybe_fail("update_record")
        table = self.collections.setdefault(collection, {})
        if record_id not in table:
            raise RemoteError("The requested resource wasn't found.", status=404)
        table[record_id].update(fields)
        table[record_id]["updated"] = self._tick()
        return dict(table[record_id])

    def delete_record(self, collection, record_id):
        self.calls.append(("delete_record", collection, {"id": record_id}))
        self._maybe_fail("delete_record")
        self.collections.get(collection, {}).pop(record_id, None)

    def auth_refresh(self):
        self.calls.append(("auth_refresh", None, {}))
        self._maybe_fail("auth_refresh")

    def health_check(self) -> int:
        if isinstance(self.health_status, Exception):
            raise self.health_status
        return self.health_status

    @property
    def token_valid(self) -> bool:
        return self.token_is_valid

    def clear_auth(self) -> None:
        self.auth_cleared = True

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]


def network_error() -> RemoteError:
    return RemoteError("Connection refused", status=0)


def permanent_error(status: int = 400) -> RemoteError:
    return RemoteError("Failed to create record.", status=status)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def fake_remote():
    """In-memory remote backend"""
    return FakeRemote()


@pytest.fixture
def test_config(tmp_path):
    """Cache settings with the monitor thread disabled"""
    return CacheConfig(directory=str(tmp_path), test_mode=True)


@pytest.fixture
def store(tmp_path):
    """LocalStore on a temporary database file"""
    local_store = LocalStore(tmp_path / "offline_cache")
    yield local_store
    local_store.close()


@pytest.fixture
def cache(fake_remote, tmp_path, test_config):
    """OfflineCache bound to the fake remote, monitoring disabled"""
    offline_cache = OfflineCache(fake_remote, tmp_path, config=test_config, start_monitoring=False)
    yield offline_cache
    offline_cache.close()


@pytest.fixture
def make_error():
    """Factories for network and permanent RemoteErrors"""
    return {"network": network_error, "permanent": permanent_error}


@pytest.fixture
def mock_supabase():
    """Mock Supabase client whose query builder methods chain"""
    mock_client = MagicMock()
    query = MagicMock()
    for method in ("select", "insert", "update", "delete", "eq", "neq", "gt", "gte",
                   "lt", "lte", "is_", "or_", "order", "range"):
        getattr(query, method).return_value = query
    query.not_ = query
    query.execute.return_value = MagicMock(data=[], count=None)
    mock_client.table.return_value = query
    return mock_client

