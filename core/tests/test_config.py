"""Tests for engine configuration loading."""

import json
from pathlib import Path

import pytest

from flowgraph.config import ConfigError, EngineConfig, get_config_path, get_flowgraph_config


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "configuration.json"
    monkeypatch.setenv("FLOWGRAPH_CONFIG", str(path))
    names = ("MAX_EXECUTIONS", "MAX_LOOP_ITERATIONS", "LOOP_TIMEOUT_SECONDS", "MAX_INPUT_LENGTH")
    for name in names:
        monkeypatch.delenv(f"FLOWGRAPH_{name}", raising=False)
    return path


class TestConfigFile:
    def test_override_path(self, config_file: Path):
        assert get_config_path() == config_file

    def test_missing_file_is_empty(self, config_file: Path):
        assert get_flowgraph_config() == {}

    def test_invalid_json_is_empty(self, config_file: Path):
        config_file.write_text("{not json")
        assert get_flowgraph_config() == {}

    def test_engine_section(self, config_file: Path):
        config_file.write_text(
            json.dumps({"engine": {"max_executions": 50, "loop_timeout_seconds": 5}})
        )

        config = EngineConfig.load()

        assert config.max_executions == 50
        assert config.loop_timeout_seconds == 5.0
        assert config.max_parallel_branches == 5


class TestPrecedence:
    def test_defaults(self, config_file: Path):
        config = EngineConfig.load()
        assert config.max_executions == 1000
        assert config.max_loop_iterations == 100
        assert config.loop_timeout_seconds == 30.0
        assert config.shared_state_mode == "unsynchronized"

    def test_env_overrides_file(self, config_file: Path, monkeypatch):
        config_file.write_text(json.dumps({"engine": {"max_loop_iterations": 20}}))
        monkeypatch.setenv("FLOWGRAPH_MAX_LOOP_ITERATIONS", "7")

        assert EngineConfig.load().max_loop_iterations == 7

    def test_explicit_overrides_win(self, config_file: Path, monkeypatch):
        monkeypatch.setenv("FLOWGRAPH_MAX_EXECUTIONS", "10")

        config = EngineConfig.load({"max_executions": 3})

        assert config.max_executions == 3

    def test_unknown_keys_kept_as_extra(self):
        config = EngineConfig.from_dict({"max_executions": "12", "theme": "dark"})
        assert config.max_executions == 12
        assert config.extra == {"theme": "dark"}

    def test_input_length_cap_defaults_off(self, config_file: Path, monkeypatch):
        assert EngineConfig.load().max_input_length == 0

        monkeypatch.setenv("FLOWGRAPH_MAX_INPUT_LENGTH", "500")
        assert EngineConfig.load().max_input_length == 500


class TestInvalidValues:
    def test_bad_env_value(self, config_file: Path, monkeypatch):
        monkeypatch.setenv("FLOWGRAPH_MAX_EXECUTIONS", "abc")

        with pytest.raises(ConfigError, match="max_executions"):
            EngineConfig.load()

    def test_bad_file_value(self, config_file: Path):
        config_file.write_text(json.dumps({"engine": {"loop_timeout_seconds": "soon"}}))

        with pytest.raises(ConfigError, match="'soon'"):
            EngineConfig.load()

    def test_config_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"max_parallel_branches": [3]})
