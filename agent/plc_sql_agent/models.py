"""
Data model classes for register logging.

A :class:`RegisterMapping` describes one polled PLC address and, through
its optional :class:`SqlConfig`, how its values end up in the database.
The field name is the identity other registers use when they refer to it
in a log condition (``Reg_<FieldName>``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class LogMode(str, Enum):
    DISABLED = "Disabled"
    INTERVAL = "Interval"
    ON_CHANGE = "OnChange"
    BOTH = "Both"

    @property
    def uses_interval(self) -> bool:
        return self in (LogMode.INTERVAL, LogMode.BOTH)

    @property
    def uses_change(self) -> bool:
        return self in (LogMode.ON_CHANGE, LogMode.BOTH)


class DataType(str, Enum):
    INT = "INT"
    UINT = "UINT"
    FLOAT = "FLOAT"
    BOOL = "BOOL"
    STRING = "STRING"


class QueryTemplate(str, Enum):
    INSERT = "insert"
    UPDATE_LATEST = "update_latest"
    UPSERT = "upsert"


@dataclass
class SqlConfig:
    """Database logging policy for a single register.

    Attributes:
        connection_string: SQLAlchemy URL, handed to the sink untouched.
        table_name: Target table for the built-in query templates.
        log_mode: When to write (see :class:`LogMode`).
        interval_seconds: Timer period for Interval/Both.
        use_custom_query: Use ``custom_query`` verbatim instead of a template.
        custom_query: Operator supplied SQL.
        log_condition: Gate expression; blank means always write.
        template: Which built-in query to use when no custom query is set.
    """

    connection_string: str = ""
    table_name: str = ""
    log_mode: LogMode = LogMode.DISABLED
    interval_seconds: int = 5
    use_custom_query: bool = False
    custom_query: str = ""
    log_condition: str = ""
    template: QueryTemplate = QueryTemplate.INSERT

    @property
    def enabled(self) -> bool:
        return self.log_mode != LogMode.DISABLED

    @property
    def has_custom_query(self) -> bool:
        return self.use_custom_query and bool(self.custom_query.strip())


@dataclass
class RegisterMapping:
    field_name: str
    register_address: str
    description: str = ""
    data_type: DataType = DataType.UINT
    length: int = 1
    unit: str = ""
    sql: Optional[SqlConfig] = None

    @property
    def logging_enabled(self) -> bool:
        return self.sql is not None and self.sql.enabled

    @property
    def display_name(self) -> str:
        return self.description or self.field_name


@dataclass
class PlcTarget:
    host: str = "192.168.3.39"
    port: int = 9005


@dataclass
class AgentConfig:
    plc: PlcTarget = field(default_factory=PlcTarget)
    poll_interval_seconds: float = 1.0
    registers: List[RegisterMapping] = field(default_factory=list)

    def get(self, field_name: str) -> Optional[RegisterMapping]:
        return next((r for r in self.registers if r.field_name == field_name), None)
