import json
from datetime import datetime

import pytest
from psycopg import errors

from mockchain.storage.errors import ConstraintViolation
from mockchain.storage.memory import MAX_LOG_PAGE_SIZE
from mockchain.storage.postgres import PostgresStore

NOW = datetime(2024, 1, 1, 12, 0, 0)


class FakeCursor:
    def __init__(self, rows=None, rowcount=0):
        self.rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    """Replays queued results and records every statement."""

    def __init__(self, results):
        self.results = results
        self.statements = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        result = self.results.pop(0) if self.results else FakeCursor()
        if isinstance(result, Exception):
            raise result
        return result


class FakePool:
    def __init__(self, *results):
        self.conn = FakeConnection(list(results))

    def connection(self):
        return self.conn


def _store(*results) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = FakePool(*results)
    store.logger = None
    return store


def _log_row(**overrides):
    row = {
        "id": 1,
        "project_id": 3,
        "endpoint_id": None,
        "stateful_endpoint_id": None,
        "user_id": None,
        "request_method": "GET",
        "request_path": "/ws/pj/users",
        "request_headers": '{"__nextcall": {"parent_log_id": 9}}',
        "request_body": None,
        "response_status_code": 200,
        "response_body": {"data": []},
        "ip_address": None,
        "latency_ms": None,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def test_unique_violation_maps_to_constraint():
    store = _store(errors.UniqueViolation("duplicate key"))
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_workspace("ws1")
    assert excinfo.value.detail == {"name": "ws1"}


def test_foreign_key_violation_maps_to_constraint():
    store = _store(errors.ForeignKeyViolation("missing parent"))
    with pytest.raises(ConstraintViolation):
        store.create_notification(5, endpoint_id=None, user_id=None, is_stateful=True)


def test_stateful_row_decodes_json_columns():
    row = {
        "id": 4,
        "origin_id": 2,
        "folder_id": 1,
        "method": "POST",
        "path": "/orders",
        "is_active": True,
        "schema": '{"name": {"type": "string"}}',
        "advanced_config": json.dumps([{"target_endpoint": "/ws/pj/audit"}]),
        "created_at": NOW,
        "updated_at": NOW,
    }
    stateful = _store(FakeCursor([row])).get_stateful_endpoint(4)
    assert stateful.endpoint_id == 2
    assert stateful.schema == {"name": {"type": "string"}}
    assert stateful.next_calls_config() == [{"target_endpoint": "/ws/pj/audit"}]


def test_list_request_logs_builds_filters_and_clamps():
    store = _store(FakeCursor([{"count": 1}]), FakeCursor([_log_row()]))
    count, logs = store.list_request_logs(
        3, method="get", status_code=200, limit=10_000, offset=-4
    )

    assert count == 1
    assert logs[0].request_headers == {"__nextcall": {"parent_log_id": 9}}
    assert logs[0].latency_ms == 0
    (count_sql, count_params), (page_sql, page_params) = store.pool.conn.statements
    assert "project_id = %s AND upper(request_method) = %s AND response_status_code = %s" in count_sql
    assert count_params == [3, "GET", 200]
    assert page_sql.endswith("ORDER BY id DESC LIMIT %s OFFSET %s")
    assert page_params == [3, "GET", 200, MAX_LOG_PAGE_SIZE, 0]


def test_insert_request_log_serializes_json():
    store = _store(FakeCursor([_log_row(id=7, latency_ms=12)]))
    log = store.insert_request_log(
        project_id=3,
        request_method="GET",
        request_path="/ws/pj/users",
        request_headers={"x": "1"},
        response_body={"data": []},
        latency_ms=12,
    )
    assert log.id == 7
    (_, params), = store.pool.conn.statements
    assert params[6] == '{"x": "1"}'
    assert params[7] == "{}"
    assert params[-1] == 12


def test_revert_to_stateless_reports_rowcount():
    store = _store(FakeCursor(rowcount=0), FakeCursor())
    assert store.revert_to_stateless(9) is False


def test_ping_runs_liveness_query():
    store = _store(FakeCursor([{"?column?": 1}]))
    store.ping()
    assert store.pool.conn.statements == [("SELECT 1", None)]
