import psycopg2
import pytest

import db_connection
from db_connection import DatabaseConnection, StatusSourceError

CONNSTR = "host=primary dbname=postgres"


class _FakeCursor:
    def __init__(self, rows=None, description=None, error=None):
        self.rows = rows or []
        self.description = description
        self.error = error
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))
        if self.error is not None:
            raise self.error

    def fetchall(self):
        return self.rows


class _FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.autocommit = False
        self.server_version = 160002
        self.close_calls = 0

    def cursor(self):
        return self._cursor

    def close(self):
        self.close_calls += 1


def _connect_with(monkeypatch, cursor):
    conn = _FakeConn(cursor)
    dsns = []

    def fake_connect(dsn):
        dsns.append(dsn)
        return conn

    monkeypatch.setattr(db_connection.psycopg2, "connect", fake_connect)
    return conn, dsns


def test_connect_passes_connection_string_and_sets_autocommit(monkeypatch):
    conn, dsns = _connect_with(monkeypatch, _FakeCursor())

    db = DatabaseConnection(CONNSTR).connect()

    assert dsns == [CONNSTR]
    assert conn.autocommit is True
    assert db.server_version == 160002


def test_connect_failure_is_wrapped(monkeypatch):
    def refuse(dsn):
        raise psycopg2.OperationalError("connection refused")

    monkeypatch.setattr(db_connection.psycopg2, "connect", refuse)

    with pytest.raises(StatusSourceError, match="could not connect to server"):
        DatabaseConnection(CONNSTR).connect()


def test_fetch_status_returns_rows_and_column_count(monkeypatch):
    cursor = _FakeCursor(
        rows=[("0/6000028", "000000010000000000000006")],
        description=[("write_lsn",), ("pg_walfile_name",)],
    )
    _connect_with(monkeypatch, cursor)
    db = DatabaseConnection(CONNSTR).connect()

    rows, column_count = db.fetch_status("SELECT 1", ("pg_receivewal",))

    assert rows == [("0/6000028", "000000010000000000000006")]
    assert column_count == 2
    assert cursor.executed == [("SELECT 1", ("pg_receivewal",))]


def test_query_failure_is_wrapped(monkeypatch):
    _connect_with(monkeypatch, _FakeCursor(error=psycopg2.ProgrammingError("syntax error")))
    db = DatabaseConnection(CONNSTR).connect()

    with pytest.raises(StatusSourceError, match="could not query for replication status"):
        db.fetch_status("SELEC 1")


def test_statement_without_result_set_is_rejected(monkeypatch):
    _connect_with(monkeypatch, _FakeCursor(description=None))
    db = DatabaseConnection(CONNSTR).connect()

    with pytest.raises(StatusSourceError, match="did not return a result set"):
        db.fetch_status("SET application_name = 'x'")


def test_close_is_idempotent(monkeypatch):
    conn, _ = _connect_with(monkeypatch, _FakeCursor())
    db = DatabaseConnection(CONNSTR).connect()

    db.close()
    db.close()

    assert conn.close_calls == 1
    assert db.conn is None


def test_context_manager_closes_connection(monkeypatch):
    conn, _ = _connect_with(monkeypatch, _FakeCursor())

    with DatabaseConnection(CONNSTR) as db:
        assert db.conn is conn

    assert conn.close_calls == 1
