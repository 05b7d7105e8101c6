"""
SQL text selection and parameter construction for register logging.

Queries use SQLAlchemy ``:Name`` bind markers.  Every write binds the same
canonical parameters (see :data:`CANONICAL_PARAMS`) plus ``Reg_<FieldName>``
for every configured register, so custom queries can pull in the values of
other registers.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from .models import QueryTemplate, RegisterMapping, SqlConfig


CANONICAL_PARAMS = ("FieldName", "RegisterAddress", "Value", "Timestamp", "Description", "Unit")
SIBLING_PARAM_PREFIX = "Reg_"

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _checked(table: str) -> str:
    if not table or not _TABLE_RE.match(table):
        raise ValueError(f"TABLE_NAME_INVALID:{table}")
    return table


def insert_template(table: str) -> str:
    t = _checked(table)
    return (
        f"INSERT INTO {t}\n"
        "(FieldName, RegisterAddress, Value, Timestamp, Description, Unit)\n"
        "VALUES\n"
        "(:FieldName, :RegisterAddress, :Value, :Timestamp, :Description, :Unit)"
    )


def update_latest_template(table: str) -> str:
    t = _checked(table)
    return (
        f"UPDATE {t}\n"
        "SET\n"
        "    Value = :Value,\n"
        "    Timestamp = :Timestamp,\n"
        "    Description = :Description,\n"
        "    Unit = :Unit\n"
        "WHERE FieldName = :FieldName\n"
        "  AND Timestamp = (\n"
        f"    SELECT MAX(Timestamp) FROM {t} WHERE FieldName = :FieldName\n"
        ")"
    )


def upsert_template(table: str) -> str:
    # SQL Server batch syntax, the engine the canonical table script targets
    t = _checked(table)
    return (
        f"IF EXISTS (SELECT 1 FROM {t} WHERE FieldName = :FieldName)\n"
        "BEGIN\n"
        f"    UPDATE {t}\n"
        "    SET\n"
        "        Value = :Value,\n"
        "        Timestamp = :Timestamp,\n"
        "        RegisterAddress = :RegisterAddress,\n"
        "        Description = :Description,\n"
        "        Unit = :Unit\n"
        "    WHERE FieldName = :FieldName\n"
        "END\n"
        "ELSE\n"
        "BEGIN\n"
        f"    INSERT INTO {t}\n"
        "    (FieldName, RegisterAddress, Value, Timestamp, Description, Unit)\n"
        "    VALUES\n"
        "    (:FieldName, :RegisterAddress, :Value, :Timestamp, :Description, :Unit)\n"
        "END"
    )


_BUILDERS = {
    QueryTemplate.INSERT: insert_template,
    QueryTemplate.UPDATE_LATEST: update_latest_template,
    QueryTemplate.UPSERT: upsert_template,
}


def build_query(table: str, template: QueryTemplate = QueryTemplate.INSERT) -> str:
    return _BUILDERS[QueryTemplate(template)](table)


def select_query(sql: SqlConfig) -> str:
    """Custom text verbatim when enabled, otherwise the configured template."""
    if sql.has_custom_query:
        return sql.custom_query
    return build_query(sql.table_name, sql.template)


def build_parameters(
    mapping: RegisterMapping,
    value: str,
    timestamp: datetime,
    siblings: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "FieldName": mapping.field_name or "",
        "RegisterAddress": mapping.register_address or "",
        "Value": value if value is not None else "",
        "Timestamp": timestamp,
        "Description": mapping.description or "",
        "Unit": mapping.unit or "",
    }
    for name, v in (siblings or {}).items():
        params[f"{SIBLING_PARAM_PREFIX}{name}"] = v if v is not None else ""
    return params


def template_catalog(table: str) -> Dict[str, str]:
    """Named query variants offered to the configuration editor."""
    t = _checked(table)
    return {
        "[INSERT] Standard Insert": insert_template(t),
        "[INSERT] Insert with Current Time": (
            f"INSERT INTO {t}\n"
            "(FieldName, RegisterAddress, Value, Timestamp, Description, Unit)\n"
            "VALUES\n"
            "(:FieldName, :RegisterAddress, :Value, CURRENT_TIMESTAMP, :Description, :Unit)"
        ),
        "[INSERT] Insert with NULL checks": (
            f"INSERT INTO {t}\n"
            "(FieldName, RegisterAddress, Value, Timestamp, Description, Unit)\n"
            "VALUES\n"
            "(COALESCE(:FieldName, 'Unknown'), :RegisterAddress, :Value, :Timestamp, :Description, :Unit)"
        ),
        "[INSERT] Insert with Other Register Values": (
            f"INSERT INTO {t}\n"
            "(FieldName, RegisterAddress, Value, Timestamp, Temperature, Pressure, FlowRate)\n"
            "VALUES\n"
            "(:FieldName, :RegisterAddress, :Value, :Timestamp, :Reg_Temperature, :Reg_Pressure, :Reg_FlowRate)"
        ),
        "[UPDATE] Update Latest Record": update_latest_template(t),
        "[UPDATE] Update by FieldName": (
            f"UPDATE {t}\n"
            "SET\n"
            "    Value = :Value,\n"
            "    Timestamp = :Timestamp\n"
            "WHERE FieldName = :FieldName"
        ),
        "[UPDATE] Update by RegisterAddress": (
            f"UPDATE {t}\n"
            "SET\n"
            "    Value = :Value,\n"
            "    Timestamp = :Timestamp\n"
            "WHERE RegisterAddress = :RegisterAddress"
        ),
        "[UPDATE] Upsert (Insert or Update)": upsert_template(t),
    }


PLACEHOLDER_HELP = """Available Placeholders:

Current Register:
:FieldName - The field name from configuration (e.g., 'T1')
:RegisterAddress - The PLC register address (e.g., 'D3115.1')
:Value - The current value read from PLC
:Timestamp - Date and time the value was logged
:Description - Description from configuration
:Unit - Unit of measurement from configuration

Other Configured Registers:
:Reg_<FieldName> - Any other register's latest value by its FieldName
Examples: :Reg_Temperature, :Reg_Pressure, :Reg_FlowRate

SQL Server style @Name markers are accepted in custom queries as well.

Example Custom Queries:

1. Simple Insert:
INSERT INTO MyTable (Field, Val, Time)
VALUES (:FieldName, :Value, :Timestamp)

2. Insert with Other Register Values:
INSERT INTO SensorData (Timestamp, Temperature, Pressure, Status)
VALUES (:Timestamp, :Reg_Temperature, :Reg_Pressure, :Value)
"""
