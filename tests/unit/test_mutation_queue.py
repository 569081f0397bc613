# =============================================================================
# tests/unit/test_mutation_queue.py
# Unit Tests for MutationQueue
# =============================================================================

import sqlite3
import threading
from unittest.mock import MagicMock

import pytest

from sync_core.errors import QueueOperationError, RemoteError
from sync_core.offline.mutation_queue import (
    MutationQueue,
    OperationType,
    deserialize_param,
    serialize_param,
)


@pytest.fixture
def queue(store, fake_remote):
    return MutationQueue(store, fake_remote)


class TestParamSerialization:
    """Test typed param round trips"""

    @pytest.mark.parametrize("value", ["text", 7, 2.25, True, False, None, [1, "a"], {"k": {"n": 1}}])
    def test_round_trip(self, value):
        param_type, text = serialize_param(value)

        assert deserialize_param(param_type, text) == value

    def test_bool_is_tagged_bool(self):
        assert serialize_param(True) == ("bool", "1")

    def test_unknown_kind(self):
        assert serialize_param(object()) is None


class TestEnqueue:
    """Test persisting operations"""

    def test_enqueue_persists_entry_and_params(self, queue, store):
        op_id = queue.enqueue(OperationType.UPDATE, "notes", "n1", {"title": "x", "done": True})

        entries = queue.pending()
        assert [e.id for e in entries] == [op_id]
        assert entries[0].operation_type == "UPDATE"
        assert entries[0].fields == {"title": "x", "done": True}
        assert store.query("SELECT COUNT(*) FROM _operation_queue_params")[0][0] == 2

    def test_unknown_values_are_omitted(self, queue):
        queue.enqueue("INSERT", "notes", "n1", {"title": "x", "blob": object()})

        assert queue.pending()[0].fields == {"title": "x"}

    def test_unknown_operation_type_raises(self, queue):
        with pytest.raises(QueueOperationError):
            queue.enqueue("UPSERT", "notes", "n1", {})

    def test_update_requires_id(self, queue):
        with pytest.raises(QueueOperationError):
            queue.enqueue(OperationType.UPDATE, "notes", None, {"a": 1})

    def test_pending_filters_by_collection(self, queue):
        queue.enqueue("DELETE", "a", "1")
        queue.enqueue("DELETE", "b", "2")

        assert [e.collection_name for e in queue.pending("b")] == ["b"]
        assert queue.pending_count() == 2


class TestDrain:
    """Test replay against the remote"""

    def test_replay_in_enqueue_order(self, queue, fake_remote):
        fake_remote.seed("notes", [{"id": "1", "title": "old"}])
        queue.enqueue(OperationType.UPDATE, "notes", "1", {"title": "new"})
        queue.enqueue(OperationType.DELETE, "notes", "1")

        assert queue.drain() == 2

        assert [c[0] for c in fake_remote.calls] == ["update_record", "delete_record"]
        assert "1" not in fake_remote.collections["notes"]
        assert queue.pending_count() == 0

    def test_insert_uses_queued_id(self, queue, fake_remote):
        queue.enqueue(OperationType.INSERT, "notes", "abc", {"title": "x"})

        queue.drain()

        assert fake_remote.collections["notes"]["abc"]["title"] == "x"

    def test_insert_without_id_lets_remote_assign(self, queue, fake_remote):
        queue.enqueue(OperationType.INSERT, "notes", "", {"title": "x"})

        queue.drain()

        assert fake_remote.calls_to("create_record")[0][2]["id"] is None

    def test_network_error_keeps_entry_and_continues(self, queue, fake_remote, make_error):
        fake_remote.seed("notes", [{"id": "2"}])
        fake_remote.errors["create_record"] = make_error["network"]()
        queue.enqueue(OperationType.INSERT, "notes", "1", {"title": "x"})
        queue.enqueue(OperationType.DELETE, "notes", "2")

        assert queue.drain() == 1

        remaining = queue.pending()
        assert [e.operation_type for e in remaining] == ["INSERT"]
        assert fake_remote.calls_to("delete_record")

    def test_permanent_insert_failure_removes_entry_and_local_row(self, queue, store, fake_remote, make_error):
        store.upsert("notes", [{"id": "1", "title": "x"}])
        fake_remote.errors["create_record"] = make_error["permanent"]()
        queue.enqueue(OperationType.INSERT, "notes", "1", {"title": "x"})

        assert queue.drain() == 1

        assert queue.pending_count() == 0
        assert store.query("SELECT COUNT(*) FROM _operation_queue_params")[0][0] == 0
        assert store.get_record("notes", "1") is None

    def test_permanent_update_failure_removes_entry_and_local_row(self, queue, store, fake_remote, make_error):
        store.upsert("notes", [{"id": "1", "title": "draft"}])
        fake_remote.errors["update_record"] = make_error["permanent"]()
        queue.enqueue(OperationType.UPDATE, "notes", "1", {"title": "final"})

        assert queue.drain() == 1

        assert queue.pending_count() == 0
        assert store.query("SELECT COUNT(*) FROM _operation_queue_params")[0][0] == 0
        assert store.get_record("notes", "1") is None
        assert fake_remote.calls_to("update_record")[0][2] == {"id": "1", "fields": {"title": "final"}}

    def test_permanent_delete_failure_discards_entry(self, queue, store, fake_remote, make_error):
        fake_remote.errors["delete_record"] = make_error["permanent"](404)
        queue.enqueue(OperationType.DELETE, "notes", "1")

        queue.drain()

        assert queue.pending_count() == 0
        assert queue.state.failed_count == 1

    def test_unexpected_error_keeps_entry(self, queue, fake_remote):
        fake_remote.errors["update_record"] = ValueError("boom")
        queue.enqueue(OperationType.UPDATE, "notes", "1", {"a": 1})

        assert queue.drain() == 0
        assert queue.pending_count() == 1

    def test_unknown_stored_type_is_discarded(self, queue, store):
        store.execute(
            "INSERT INTO _operation_queue (operation_type, created, collection_name, id_to_modify) "
            "VALUES ('MERGE', 0, 'notes', '1')"
        )

        assert queue.drain() == 1
        assert queue.pending_count() == 0

    def test_state_tracking(self, queue, fake_remote):
        queue.enqueue(OperationType.INSERT, "notes", "1", {"a": 1})

        queue.drain()

        assert queue.state.total_replayed == 1
        assert queue.state.last_drain is not None
        assert queue.state.is_draining is False

    def test_concurrent_drain_returns_immediately(self, store):
        entered = threading.Event()
        release = threading.Event()
        remote = MagicMock()

        def slow_create(*args, **kwargs):
            entered.set()
            release.wait(timeout=5)
            return {}

        remote.create_record.side_effect = slow_create
        queue = MutationQueue(store, remote)
        queue.enqueue(OperationType.INSERT, "notes", "1", {"a": 1})

        results = []
        worker = threading.Thread(target=lambda: results.append(queue.drain()))
        worker.start()
        assert entered.wait(timeout=5)

        assert queue.drain() == 0

        release.set()
        worker.join(timeout=5)
        assert results == [1]
        assert remote.create_record.call_count == 1

    def test_network_error_detected_from_message(self, queue, fake_remote):
        fake_remote.errors["create_record"] = RemoteError("Failed host lookup: 'pb.example.com'")
        queue.enqueue(OperationType.INSERT, "notes", "1", {"a": 1})

        queue.drain()

        assert queue.pending_count() == 1


class TestLongQueue:
    """Test a backlog larger than SQLite's bound-variable limit"""

    @pytest.fixture
    def limited_store(self, store):
        connection = store._get_connection()
        if hasattr(connection, "setlimit"):
            connection.setlimit(sqlite3.SQLITE_LIMIT_VARIABLE_NUMBER, 999)
        return store

    def test_pending_and_drain_over_variable_limit(self, limited_store, fake_remote):
        queue = MutationQueue(limited_store, fake_remote)
        for n in range(1000):
            if n % 100 == 0:
                queue.enqueue(OperationType.INSERT, "notes", f"n{n}", {"rank": n, "done": False})
            else:
                queue.enqueue(OperationType.DELETE, "notes", f"n{n}")

        operations = queue.pending()

        assert len(operations) == 1000
        assert operations[0].fields == {"rank": 0, "done": False}
        assert operations[500].fields == {"rank": 500, "done": False}
        assert operations[1].fields == {}

        assert queue.drain() == 1000
        assert queue.pending_count() == 0
        assert len(fake_remote.calls_to("create_record")) == 10

    def test_pending_for_one_collection(self, limited_store, fake_remote):
        queue = MutationQueue(limited_store, fake_remote)
        queue.enqueue(OperationType.INSERT, "notes", "a", {"title": "note"})
        queue.enqueue(OperationType.INSERT, "tasks", "b", {"title": "task"})

        operations = queue.pending("tasks")

        assert [(e.id_to_modify, e.fields) for e in operations] == [("b", {"title": "task"})]
