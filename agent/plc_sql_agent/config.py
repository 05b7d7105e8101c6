"""
Register configuration loading.

The register list lives in ``registers.json``::

    {
      "plc": {"host": "192.168.3.39", "port": 9005},
      "pollIntervalSeconds": 1,
      "registers": [
        {"fieldName": "T1", "registerAddress": "D100", "dataType": "UINT",
         "unit": "C", "sql": {"connectionString": "...", "tableName": "RegisterLogs",
                              "logMode": "Both", "intervalSeconds": 5}}
      ]
    }

Keys are matched case-insensitively so files written with PascalCase
property names load too.  Everything is validated here, at load time, so
the loggers never see a mapping they cannot run.
"""

from __future__ import annotations

import json
import logging
import os
import queue
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .address import parse_address
from .conditions import validate_condition
from .errors import ConfigError, InvalidAddressError
from .models import (
    AgentConfig,
    DataType,
    LogMode,
    PlcTarget,
    QueryTemplate,
    RegisterMapping,
    SqlConfig,
)
from .protocol import MAX_DEVICE_ADDRESS, MAX_READ_POINTS
from .values import word_count


log = logging.getLogger(__name__)

CONFIG_FOLDER = "Configurations"
CONFIG_FILE = "registers.json"


def default_config_path() -> Path:
    env = os.environ.get("AGENT_CONFIG")
    if env:
        return Path(env).expanduser()
    return Path.cwd() / CONFIG_FOLDER / CONFIG_FILE


def _ci(d: Dict[str, Any], key: str, default: Any = None) -> Any:
    if key in d:
        return d[key]
    low = key.lower()
    for k, v in d.items():
        if isinstance(k, str) and k.lower() == low:
            return v
    return default


def _enum(enum_cls, raw: Any, field: str, what: str):
    if raw is None or raw == "":
        return None
    if isinstance(raw, int) and not isinstance(raw, bool):
        members = list(enum_cls)
        if 0 <= raw < len(members):
            return members[raw]
        raise ConfigError(f"unknown {what}: {raw}", field)
    text = str(raw).strip()
    for m in enum_cls:
        if text.lower() in (m.value.lower(), m.name.lower()):
            return m
    raise ConfigError(f"unknown {what}: {raw}", field)


def _int(raw: Any, field: str, what: str, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be an integer, got {raw!r}", field)


def _parse_sql(raw: Dict[str, Any], field: str) -> SqlConfig:
    if not isinstance(raw, dict):
        raise ConfigError("sql must be an object", field)
    sql = SqlConfig(
        connection_string=str(_ci(raw, "connectionString", "") or ""),
        table_name=str(_ci(raw, "tableName", "") or "").strip(),
        log_mode=_enum(LogMode, _ci(raw, "logMode"), field, "log mode") or LogMode.DISABLED,
        interval_seconds=_int(_ci(raw, "intervalSeconds"), field, "intervalSeconds", 5),
        use_custom_query=bool(_ci(raw, "useCustomQuery", False)),
        custom_query=str(_ci(raw, "customQuery", "") or ""),
        log_condition=str(_ci(raw, "logCondition", "") or ""),
        template=_enum(QueryTemplate, _ci(raw, "queryTemplate"), field, "query template") or QueryTemplate.INSERT,
    )
    if sql.enabled:
        if sql.log_mode.uses_interval and sql.interval_seconds <= 0:
            raise ConfigError(
                f"intervalSeconds must be positive for log mode {sql.log_mode.value}", field
            )
        if not sql.has_custom_query and not sql.table_name:
            raise ConfigError("tableName is required unless a custom query is used", field)
        if not sql.connection_string.strip():
            log.warning("Register %s has logging enabled but no connection string", field)
        for problem in validate_condition(sql.log_condition):
            log.warning("Register %s log condition: %s", field, problem)
    return sql


def _parse_register(raw: Dict[str, Any], index: int) -> RegisterMapping:
    if not isinstance(raw, dict):
        raise ConfigError(f"register #{index} must be an object")
    name = str(_ci(raw, "fieldName", "") or "").strip()
    if not name:
        raise ConfigError(f"register #{index} has no fieldName")
    address = str(_ci(raw, "registerAddress", "") or "").strip()
    try:
        addr = parse_address(address)
    except InvalidAddressError as e:
        raise ConfigError(f"invalid registerAddress {address!r} ({e.reason})", name) from e
    data_type = _enum(DataType, _ci(raw, "dataType"), name, "data type") or DataType.UINT
    length = _int(_ci(raw, "length"), name, "length", 1)
    if length <= 0:
        raise ConfigError("length must be positive", name)
    count = 1 if addr.is_bit else word_count(data_type, length)
    if count > MAX_READ_POINTS:
        raise ConfigError(f"length needs {count} words, at most {MAX_READ_POINTS} can be read at once", name)
    if addr.word + count - 1 > MAX_DEVICE_ADDRESS:
        raise ConfigError(f"{count} words from {address} run past the last device address", name)
    sql_raw = _ci(raw, "sql")
    return RegisterMapping(
        field_name=name,
        register_address=address,
        description=str(_ci(raw, "description", "") or ""),
        data_type=data_type,
        length=length,
        unit=str(_ci(raw, "unit", "") or ""),
        sql=_parse_sql(sql_raw, name) if sql_raw is not None else None,
    )


def parse_config(document: Dict[str, Any]) -> AgentConfig:
    if not isinstance(document, dict):
        raise ConfigError("configuration root must be an object")
    plc_raw = _ci(document, "plc") or {}
    plc = PlcTarget(
        host=str(_ci(plc_raw, "host", PlcTarget.host) or PlcTarget.host),
        port=_int(_ci(plc_raw, "port"), "plc", "port", PlcTarget.port),
    )
    poll = _ci(document, "pollIntervalSeconds", 1.0)
    try:
        poll = float(poll)
    except (TypeError, ValueError):
        raise ConfigError(f"pollIntervalSeconds must be a number, got {poll!r}")
    if poll <= 0:
        raise ConfigError("pollIntervalSeconds must be positive")

    registers: List[RegisterMapping] = []
    seen = set()
    for i, raw in enumerate(_ci(document, "registers") or []):
        mapping = _parse_register(raw, i)
        if mapping.field_name in seen:
            raise ConfigError("duplicate fieldName", mapping.field_name)
        seen.add(mapping.field_name)
        registers.append(mapping)
    return AgentConfig(plc=plc, poll_interval_seconds=poll, registers=registers)


def load_config(path: Optional[Union[str, Path]] = None) -> AgentConfig:
    p = Path(path) if path else default_config_path()
    if not p.is_file():
        raise ConfigError(f"configuration file not found at: {p}")
    try:
        document = json.loads(p.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"failed to parse JSON configuration file: {e}") from e
    config = parse_config(document)
    if not config.registers:
        log.warning("No registers found in configuration file %s", p)
    else:
        log.info("Loaded %s registers from configuration", len(config.registers))
    return config


def dump_config(config: AgentConfig) -> Dict[str, Any]:
    def _sql(s: SqlConfig) -> Dict[str, Any]:
        return {
            "connectionString": s.connection_string,
            "tableName": s.table_name,
            "logMode": s.log_mode.value,
            "intervalSeconds": s.interval_seconds,
            "useCustomQuery": s.use_custom_query,
            "customQuery": s.custom_query,
            "logCondition": s.log_condition,
            "queryTemplate": s.template.value,
        }

    return {
        "plc": asdict(config.plc),
        "pollIntervalSeconds": config.poll_interval_seconds,
        "registers": [
            {
                "fieldName": r.field_name,
                "registerAddress": r.register_address,
                "description": r.description,
                "dataType": r.data_type.value,
                "length": r.length,
                "unit": r.unit,
                "sql": _sql(r.sql) if r.sql else None,
            }
            for r in config.registers
        ],
    }


def save_config(config: AgentConfig, path: Optional[Union[str, Path]] = None) -> Path:
    p = Path(path) if path else default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(dump_config(config), indent=2), encoding="utf-8")
    log.info("Saved %s registers to %s", len(config.registers), p)
    return p


class ConfigChannel:
    """Hands new configuration snapshots to the poll loop.

    Producers publish; the poll loop takes the newest snapshot at the start
    of its next tick.  Older unconsumed snapshots are superseded.
    """

    def __init__(self) -> None:
        self._q: "queue.Queue[AgentConfig]" = queue.Queue()

    def publish(self, config: AgentConfig) -> None:
        self._q.put(config)

    def take_latest(self) -> Optional[AgentConfig]:
        latest = None
        while True:
            try:
                latest = self._q.get_nowait()
            except queue.Empty:
                return latest
