"""Tests for plc_sql_agent.sink against SQLite files."""

from datetime import datetime

import pytest
from sqlalchemy import text

from plc_sql_agent.errors import PersistenceFailure
from plc_sql_agent.queries import build_query
from plc_sql_agent.sink import SqlAlchemySink, create_log_table, to_bind_style


def params(value="1", field="T1", ts=datetime(2024, 5, 1, 12, 0, 0)):
    return {
        "FieldName": field,
        "RegisterAddress": "D100",
        "Value": value,
        "Timestamp": ts,
        "Description": "",
        "Unit": "",
    }


@pytest.fixture
def db(tmp_path):
    url = f"sqlite:///{tmp_path / 'logs.db'}"
    sink = SqlAlchemySink()
    yield url, sink
    sink.dispose()


def rows(sink, url, table="RegisterLogs"):
    with sink.engine(url).connect() as conn:
        return conn.execute(text(f"SELECT FieldName, Value FROM {table} ORDER BY Id")).fetchall()


class TestToBindStyle:
    def test_at_markers(self):
        assert to_bind_style("VALUES (@Value, @Reg_T1)") == "VALUES (:Value, :Reg_T1)"

    def test_leaves_globals_and_emails(self):
        q = "SELECT @@ROWCOUNT, 'a@b.com'"
        assert to_bind_style(q) == q


class TestSqlAlchemySink:
    def test_ensure_table(self, db):
        url, sink = db
        assert sink.ensure_table(url, "RegisterLogs") is False
        create_log_table(url, sink=sink)
        assert sink.ensure_table(url, "RegisterLogs") is True

    def test_insert(self, db):
        url, sink = db
        create_log_table(url, sink=sink)
        assert sink.execute(url, build_query("RegisterLogs"), params("12")) is True
        assert rows(sink, url) == [("T1", "12")]

    def test_at_style_custom_query(self, db):
        url, sink = db
        create_log_table(url, sink=sink)
        q = (
            "INSERT INTO RegisterLogs (FieldName, RegisterAddress, Value, Timestamp) "
            "VALUES (@FieldName, @RegisterAddress, @Value, @Timestamp)"
        )
        assert sink.execute(url, q, params("3")) is True
        assert rows(sink, url) == [("T1", "3")]

    def test_update_latest_touches_newest_row(self, db):
        url, sink = db
        create_log_table(url, sink=sink)
        insert = build_query("RegisterLogs")
        sink.execute(url, insert, params("1", ts=datetime(2024, 1, 1)))
        sink.execute(url, insert, params("2", ts=datetime(2024, 1, 2)))
        assert sink.execute(url, build_query("RegisterLogs", "update_latest"), params("9", ts=datetime(2024, 1, 3)))
        assert rows(sink, url) == [("T1", "1"), ("T1", "9")]

    def test_update_without_rows_fails(self, db):
        url, sink = db
        create_log_table(url, sink=sink)
        assert sink.execute(url, build_query("RegisterLogs", "update_latest"), params()) is False

    def test_blank_connection_string(self):
        assert SqlAlchemySink().execute("  ", "SELECT 1", {}) is False

    def test_missing_table_reports_false(self, db):
        url, sink = db
        assert sink.execute(url, build_query("Nope"), params()) is False

    def test_engine_cached(self, db):
        url, sink = db
        assert sink.engine(url) is sink.engine(url)

    def test_test_connection(self, db):
        url, sink = db
        assert sink.test_connection(url) is True
        assert sink.test_connection("") is False


class TestCreateLogTable:
    def test_idempotent(self, db):
        url, sink = db
        create_log_table(url, "Custom", sink=sink)
        create_log_table(url, "Custom", sink=sink)
        assert sink.ensure_table(url, "Custom")

    def test_failure_raises(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing-dir' / 'x.db'}"
        with pytest.raises(PersistenceFailure):
            create_log_table(url)
