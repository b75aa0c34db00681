"""Unit tests for configuration management."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from checkonaut.config import (
    BindingMode,
    CheckonautConfig,
    EngineConfig,
    LogLevel,
    find_config_file,
    load_config,
)


class TestCheckonautConfig:
    """Test complete CheckonautConfig model."""

    def test_defaults(self):
        """Test default configuration values."""
        config = CheckonautConfig()
        assert config.discovery.dotfiles is False
        assert config.discovery.dotdirs is False
        assert config.discovery.follow_links is False
        assert config.engine.entrypoint == "Check"
        assert config.engine.test_prefix == "Test"
        assert config.engine.test_suffix == "_test.lua"
        assert config.engine.binding == BindingMode.EXPLICIT
        assert config.engine.timeout_seconds == 30.0
        assert config.logging.level == LogLevel.WARN.value

    def test_config_from_dict(self):
        """Test config creation from camelCase dictionary."""
        config_data = {
            "discovery": {"dotfiles": True, "followLinks": True, "exclude": ["vendor/*"]},
            "engine": {"binding": "implicit", "timeoutSeconds": 5, "workers": 2, "testPrefix": "Spec"},
            "logging": {"level": "debug"},
        }

        config = CheckonautConfig(**config_data)
        assert config.discovery.dotfiles is True
        assert config.discovery.follow_links is True
        assert config.discovery.exclude == ["vendor/*"]
        assert config.engine.binding == BindingMode.IMPLICIT
        assert config.engine.timeout_seconds == 5
        assert config.engine.effective_workers() == 2
        assert config.engine.test_prefix == "Spec"
        assert config.logging.level == "debug"

    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError):
            CheckonautConfig(**{"output": {}})

    @pytest.mark.parametrize("field,value", [
        ("entrypoint", "not-an-identifier"),
        ("testSuffix", "_test.py"),
        ("timeoutSeconds", 0),
        ("workers", 0),
    ])
    def test_engine_validation(self, field, value):
        with pytest.raises(ValueError):
            EngineConfig(**{field: value})

    def test_effective_workers_defaults_to_cpu_count(self):
        with patch("checkonaut.config.os.cpu_count", return_value=6):
            assert EngineConfig().effective_workers() == 6

    def test_resolved_read_root_defaults_to_cwd(self):
        assert EngineConfig().resolved_read_root() == Path.cwd().resolve()


class TestConfigLoading:
    """Test configuration file loading."""

    def test_load_explicit_file(self, tmp_path):
        config_file = tmp_path / ".checkonaut.json"
        config_file.write_text(json.dumps({"engine": {"binding": "implicit"}}))

        config = load_config(config_file)
        assert config.engine.binding == BindingMode.IMPLICIT

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.json")

    def test_invalid_json_raises_value_error(self, tmp_path):
        config_file = tmp_path / ".checkonaut.json"
        config_file.write_text("{broken")

        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(config_file)

    def test_invalid_values_raise_value_error(self, tmp_path):
        config_file = tmp_path / ".checkonaut.json"
        config_file.write_text(json.dumps({"engine": {"binding": "sometimes"}}))

        with pytest.raises(ValueError, match="Failed to load config"):
            load_config(config_file)

    def test_relative_read_root_resolves_against_config_dir(self, tmp_path):
        config_dir = tmp_path / "conf"
        config_dir.mkdir()
        config_file = config_dir / ".checkonaut.json"
        config_file.write_text(json.dumps({"engine": {"readRoot": "../shared"}}))

        config = load_config(config_file)
        assert config.engine.resolved_read_root() == (tmp_path / "shared").resolve()

    def test_find_config_file_searches_parents(self, tmp_path):
        config_file = tmp_path / ".checkonaut.json"
        config_file.write_text("{}")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_config_file(nested) == config_file.resolve()

    def test_defaults_when_no_file_found(self):
        with patch("checkonaut.config.find_config_file", return_value=None):
            config = load_config()
        assert config == CheckonautConfig()
