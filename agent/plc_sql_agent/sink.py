"""
Persistence sink: runs the selected logging query against the configured
database.

The connection string is handed to SQLAlchemy exactly as configured.  One
engine is kept per connection string; every write runs in its own
``engine.begin()`` transaction.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    inspect,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceFailure


log = logging.getLogger(__name__)

DEFAULT_TABLE = "RegisterLogs"

# SQL Server style @Name markers in operator supplied text; @@GLOBALS and
# addresses like a@b are left alone
_AT_PARAM_RE = re.compile(r"(?<![@\w])@([A-Za-z_]\w*)")


class PersistenceSink(Protocol):
    def ensure_table(self, connection_string: str, table: str) -> bool: ...

    def execute(self, connection_string: str, query: str, params: Mapping[str, Any]) -> bool: ...


def to_bind_style(query: str) -> str:
    return _AT_PARAM_RE.sub(r":\1", query)


def _split_table(table: str) -> Tuple[Optional[str], str]:
    if "." in table:
        schema, name = table.split(".", 1)
        return schema, name
    return None, table


def _format_params(params: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}='{v}'" for k, v in params.items())


class SqlAlchemySink:
    def __init__(self, **engine_kwargs: Any) -> None:
        self._engines: Dict[str, Engine] = {}
        self._mtx = threading.Lock()
        self._engine_kwargs = engine_kwargs

    def engine(self, connection_string: str) -> Engine:
        with self._mtx:
            eng = self._engines.get(connection_string)
            if eng is None:
                eng = create_engine(connection_string, **self._engine_kwargs)
                self._engines[connection_string] = eng
            return eng

    def dispose(self) -> None:
        with self._mtx:
            for eng in self._engines.values():
                eng.dispose()
            self._engines.clear()

    def test_connection(self, connection_string: str) -> bool:
        if not connection_string or not connection_string.strip():
            return False
        try:
            with self.engine(connection_string).connect():
                pass
            log.info("Database connection test successful")
            return True
        except SQLAlchemyError as e:
            log.error("Database connection test failed: %s", e)
            return False

    def ensure_table(self, connection_string: str, table: str) -> bool:
        """Report whether ``table`` exists; never creates it."""
        if not connection_string or not connection_string.strip() or not table:
            return False
        schema, name = _split_table(table)
        try:
            exists = inspect(self.engine(connection_string)).has_table(name, schema=schema)
        except SQLAlchemyError as e:
            log.error("SQL error checking table existence: %s", e)
            return False
        if exists:
            log.info("Table '%s' verified in database", table)
        else:
            log.error("Table '%s' does not exist in database", table)
        return exists

    def execute(self, connection_string: str, query: str, params: Mapping[str, Any]) -> bool:
        if not connection_string or not connection_string.strip():
            log.warning("Connection string is empty, skipping database operation")
            return False
        sql = to_bind_style(query)
        log.info("Executing SQL: %s", sql)
        log.info("Parameters: %s", _format_params(params))
        try:
            with self.engine(connection_string).begin() as conn:
                result = conn.execute(text(sql), dict(params))
                rows = result.rowcount
        except SQLAlchemyError as e:
            log.error("SQL error for %s: %s", params.get("FieldName"), e)
            return False
        # -1: the driver cannot tell (multi-statement batches)
        if rows == 0:
            log.warning("SQL operation failed for %s, no rows affected", params.get("FieldName"))
            return False
        log.info("Logged %s = %s to database (%s rows affected)", params.get("FieldName"), params.get("Value"), rows)
        return True


def log_table(metadata: MetaData, table: str = DEFAULT_TABLE) -> Table:
    """Canonical six-column layout the built-in templates write to."""
    schema, name = _split_table(table)
    return Table(
        name,
        metadata,
        Column("Id", Integer, primary_key=True, autoincrement=True),
        Column("FieldName", String(100), nullable=False),
        Column("RegisterAddress", String(50), nullable=False),
        Column("Value", String(100)),
        Column("Timestamp", DateTime, nullable=False),
        Column("Description", String(500)),
        Column("Unit", String(50)),
        Index(f"IX_{name}_Timestamp", "Timestamp"),
        Index(f"IX_{name}_FieldName_Timestamp", "FieldName", "Timestamp"),
        schema=schema,
    )


def create_log_table(connection_string: str, table: str = DEFAULT_TABLE, sink: Optional[SqlAlchemySink] = None) -> None:
    sink = sink or SqlAlchemySink()
    md = MetaData()
    log_table(md, table)
    try:
        md.create_all(sink.engine(connection_string))
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Could not create table {table}: {e}", table=table) from e
    log.info("Table '%s' is ready", table)
