"""Tests for plc_sql_agent.config."""

import json

import pytest

from plc_sql_agent.config import (
    ConfigChannel,
    default_config_path,
    dump_config,
    load_config,
    parse_config,
    save_config,
)
from plc_sql_agent.errors import ConfigError
from plc_sql_agent.models import AgentConfig, DataType, LogMode, QueryTemplate


def register(name="T1", address="D100", **extra):
    doc = {"fieldName": name, "registerAddress": address}
    doc.update(extra)
    return doc


def sql(**extra):
    doc = {"connectionString": "sqlite://", "tableName": "RegisterLogs", "logMode": "OnChange"}
    doc.update(extra)
    return doc


class TestParseConfig:
    def test_full_document(self):
        cfg = parse_config({
            "plc": {"host": "10.0.0.5", "port": 5007},
            "pollIntervalSeconds": 0.5,
            "registers": [
                register(dataType="float", unit="bar", sql=sql(logMode="Both", intervalSeconds=3, logCondition="Value > 1")),
                register("T2", "D3115.1"),
            ],
        })
        assert cfg.plc.host == "10.0.0.5"
        assert cfg.plc.port == 5007
        assert cfg.poll_interval_seconds == 0.5
        t1 = cfg.get("T1")
        assert t1.data_type == DataType.FLOAT
        assert t1.sql.log_mode == LogMode.BOTH
        assert t1.sql.interval_seconds == 3
        assert t1.logging_enabled
        assert cfg.get("T2").sql is None
        assert cfg.get("T2").data_type == DataType.UINT

    def test_pascal_case_keys(self):
        cfg = parse_config({"Registers": [{
            "FieldName": "T1",
            "RegisterAddress": "D1",
            "Sql": {"ConnectionString": "x", "TableName": "Logs", "LogMode": "Interval", "IntervalSeconds": 9},
        }]})
        assert cfg.registers[0].sql.log_mode == LogMode.INTERVAL
        assert cfg.registers[0].sql.interval_seconds == 9

    def test_numeric_log_mode(self):
        cfg = parse_config({"registers": [register(sql=sql(logMode=2))]})
        assert cfg.registers[0].sql.log_mode == LogMode.ON_CHANGE

    def test_query_template(self):
        cfg = parse_config({"registers": [register(sql=sql(queryTemplate="update_latest"))]})
        assert cfg.registers[0].sql.template == QueryTemplate.UPDATE_LATEST

    def test_defaults(self):
        cfg = parse_config({})
        assert cfg.registers == []
        assert cfg.plc.port == 9005
        assert cfg.poll_interval_seconds == 1.0

    def test_custom_query_needs_no_table(self):
        cfg = parse_config({"registers": [register(sql=sql(tableName="", useCustomQuery=True, customQuery="INSERT INTO X VALUES (@Value)"))]})
        assert cfg.registers[0].sql.has_custom_query

    def test_bad_condition_only_warns(self):
        cfg = parse_config({"registers": [register(sql=sql(logCondition="Value >>"))]})
        assert cfg.registers[0].sql.log_condition == "Value >>"

    @pytest.mark.parametrize(
        "document,field",
        [
            ({"registers": [register(sql=sql(logMode="Sometimes"))]}, "T1"),
            ({"registers": [register(dataType="DOUBLE")]}, "T1"),
            ({"registers": [register(address="D100.16")]}, "T1"),
            ({"registers": [register(address="X")]}, "T1"),
            ({"registers": [register(sql=sql(logMode="Interval", intervalSeconds=0))]}, "T1"),
            ({"registers": [register(sql=sql(logMode="Both", intervalSeconds=-5))]}, "T1"),
            ({"registers": [register(sql=sql(tableName=""))]}, "T1"),
            ({"registers": [register(length=0)]}, "T1"),
            ({"registers": [register(), register()]}, "T1"),
            ({"registers": [register(sql=sql(intervalSeconds="soon"))]}, "T1"),
        ],
    )
    def test_rejects(self, document, field):
        with pytest.raises(ConfigError) as exc:
            parse_config(document)
        assert exc.value.field == field
        assert exc.value.message.startswith("Config Error: [T1]")

    def test_zero_interval_allowed_when_disabled(self):
        cfg = parse_config({"registers": [register(sql=sql(logMode="Disabled", intervalSeconds=0))]})
        assert not cfg.registers[0].logging_enabled

    def test_missing_field_name(self):
        with pytest.raises(ConfigError):
            parse_config({"registers": [{"registerAddress": "D1"}]})

    def test_non_positive_poll_interval(self):
        with pytest.raises(ConfigError):
            parse_config({"pollIntervalSeconds": 0})


class TestFiles:
    def test_load_roundtrip(self, tmp_path):
        path = tmp_path / "registers.json"
        doc = {"registers": [register(description="Temp", sql=sql(logCondition="Reg_T2 == 1"))]}
        path.write_text(json.dumps(doc), encoding="utf-8-sig")
        cfg = load_config(path)
        assert cfg.registers[0].description == "Temp"
        out = save_config(cfg, tmp_path / "out" / "registers.json")
        assert load_config(out) == cfg

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.json")

    def test_bad_json(self, tmp_path):
        path = tmp_path / "registers.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="parse"):
            load_config(path)

    def test_default_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("AGENT_CONFIG", str(tmp_path / "r.json"))
        assert default_config_path() == tmp_path / "r.json"

    def test_default_path(self, monkeypatch, tmp_path):
        monkeypatch.delenv("AGENT_CONFIG", raising=False)
        monkeypatch.chdir(tmp_path)
        assert default_config_path() == tmp_path / "Configurations" / "registers.json"

    def test_dump_uses_camel_case(self):
        cfg = parse_config({"registers": [register(sql=sql())]})
        out = dump_config(cfg)
        assert out["registers"][0]["sql"]["logMode"] == "OnChange"
        assert out["registers"][0]["dataType"] == "UINT"


class TestConfigChannel:
    def test_newest_wins(self):
        ch = ConfigChannel()
        a, b = AgentConfig(poll_interval_seconds=1), AgentConfig(poll_interval_seconds=2)
        ch.publish(a)
        ch.publish(b)
        assert ch.take_latest() is b
        assert ch.take_latest() is None


class TestReadSize:
    def test_string_longer_than_one_read_rejected(self):
        with pytest.raises(ConfigError) as exc:
            parse_config({"registers": [register(address="D10", dataType="STRING", length=961)]})
        assert exc.value.field == "T1"

    def test_string_at_read_limit_accepted(self):
        cfg = parse_config({"registers": [register(address="D10", dataType="STRING", length=960)]})
        assert cfg.registers[0].length == 960

    def test_words_past_last_address_rejected(self):
        with pytest.raises(ConfigError):
            parse_config({"registers": [register(address="D16777215", dataType="FLOAT")]})

    def test_bit_ignores_length(self):
        cfg = parse_config({"registers": [register(address="D16777215.3", dataType="STRING", length=4)]})
        assert cfg.registers[0].length == 4
