# tests/test_config.py

import logging
from datetime import datetime, timezone

import pytest

import main
from config.logging_config import EXECUTION, SUCCESS, get_logger
from utils import ConfigError, ValidationError, engine_settings, load_config, parse_numeric, parse_timestamp, \
    validate_config


@pytest.fixture
def valid_config():
    return {"engine": {"tick_interval_s": 30, "max_concurrent_executions": 5, "cooldown_s": 3600}}


def test_bundled_config_loads():
    config = load_config()
    assert config["engine"]["max_concurrent_executions"] == 5
    assert len(config["rules"]) == 4
    assert len(config["opportunities"]) == 3


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.yaml"))


def test_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("engine: [unclosed\n")
    with pytest.raises(ConfigError):
        load_config(str(path))


@pytest.mark.parametrize("engine_changes", [
    {"tick_interval_s": 0},
    {"max_concurrent_executions": 0},
    {"cooldown_s": -1},
    {"cooldown_s": "soon"},
    {"condition_mode": "most"},
])
def test_invalid_engine_values(valid_config, engine_changes):
    valid_config["engine"].update(engine_changes)
    with pytest.raises(ConfigError):
        validate_config(valid_config)


def test_missing_engine_key(valid_config):
    del valid_config["engine"]["cooldown_s"]
    with pytest.raises(ConfigError):
        validate_config(valid_config)


def test_only_dry_run_executor_is_supported(valid_config):
    valid_config["executor"] = {"mode": "mainnet"}
    with pytest.raises(ConfigError):
        validate_config(valid_config)


def test_engine_settings_fill_defaults(valid_config):
    settings = engine_settings(valid_config)
    assert settings["condition_mode"] == "all"
    assert settings["execution_timeout_s"] is None
    assert settings["complete_opportunity_on_success"] is False


def test_env_overrides(valid_config, monkeypatch):
    monkeypatch.setenv("DROPPILOT_MAX_CONCURRENT", "2")
    monkeypatch.setenv("DROPPILOT_LOG_LEVEL", "DEBUG")
    config = main.apply_env_overrides(valid_config)
    assert config["engine"]["max_concurrent_executions"] == 2
    assert config["logging"]["level"] == "DEBUG"


def test_invalid_env_override(valid_config, monkeypatch):
    monkeypatch.setenv("DROPPILOT_TICK_INTERVAL_S", "often")
    with pytest.raises(ConfigError):
        main.apply_env_overrides(valid_config)


@pytest.mark.parametrize("value, expected", [
    ("$500-2000", 500.0),
    ("$1,000-5,000", 1000.0),
    (" 0.05 ", 0.05),
    (42, 42.0),
    ("n/a", None),
    (None, None),
    (True, None),
])
def test_parse_numeric(value, expected):
    assert parse_numeric(value) == expected


def test_parse_timestamp():
    expected = datetime(2024, 12, 31, tzinfo=timezone.utc)
    assert parse_timestamp("2024-12-31T00:00:00Z") == expected
    assert parse_timestamp("2024-12-31T00:00:00") == expected
    assert parse_timestamp(expected.timestamp()) == expected
    assert parse_timestamp(None) is None
    with pytest.raises(ValidationError):
        parse_timestamp("31/12/2024")


def test_custom_log_levels():
    log = get_logger("droppilot.test")
    assert logging.getLevelName(EXECUTION) == "EXECUTION"
    assert logging.getLevelName(SUCCESS) == "SUCCESS"
    assert callable(log.execution)
    assert callable(log.success)
