"""Tests for KernelConfig loading and validation (bakery_kernel/config.py)."""

import pytest
import yaml

from bakery_kernel.config import (
    KernelConfig,
    config_from_env,
    config_from_mapping,
    load_config,
)


class TestKernelConfigDefaults:
    def test_defaults(self):
        config = KernelConfig()
        assert config.cost_decimal_places == 9
        assert config.display_decimal_places == 2
        assert config.max_conflict_retries == 3
        assert config.lock_timeout_seconds > 0

    def test_frozen(self):
        with pytest.raises(Exception):
            KernelConfig().log_level = "DEBUG"


class TestKernelConfigValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"database_url": ""},
            {"lock_timeout_seconds": 0},
            {"max_conflict_retries": -1},
            {"retry_backoff_seconds": -0.1},
            {"cost_decimal_places": 1},
            {"display_decimal_places": 19},
            {"log_level": "CHATTY"},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            KernelConfig(**overrides)

    def test_lowercase_log_level_accepted(self):
        assert KernelConfig(log_level="debug").log_level == "debug"


class TestConfigFromMapping:
    def test_known_keys(self):
        config = config_from_mapping({"lock_timeout_seconds": 1.5, "max_conflict_retries": 5})
        assert config.lock_timeout_seconds == 1.5
        assert config.max_conflict_retries == 5

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="lock_timout"):
            config_from_mapping({"lock_timout": 1})


class TestLoadConfig:
    def test_flat_file(self, tmp_path):
        path = tmp_path / "bakery.yaml"
        path.write_text(yaml.safe_dump({"database_url": "sqlite:///x.db", "log_level": "DEBUG"}))
        config = load_config(path)
        assert config.database_url == "sqlite:///x.db"
        assert config.log_level == "DEBUG"

    def test_nested_under_section(self, tmp_path):
        path = tmp_path / "bakery.yaml"
        path.write_text("bakery_kernel:\n  max_conflict_retries: 7\n")
        assert load_config(path).max_conflict_retries == 7

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "bakery.yaml"
        path.write_text("")
        assert load_config(path) == KernelConfig()

    def test_non_mapping_root_rejected(self, tmp_path):
        path = tmp_path / "bakery.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bakery.yaml"
        path.write_text("database_url: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_config(path)


class TestConfigFromEnv:
    def test_overrides_applied(self):
        config = config_from_env(
            environ={
                "BAKERY_DATABASE_URL": "postgresql://u@h/db",
                "BAKERY_LOCK_TIMEOUT": "0.5",
                "BAKERY_MAX_RETRIES": "4",
                "BAKERY_LOG_LEVEL": "WARNING",
            }
        )
        assert config.database_url == "postgresql://u@h/db"
        assert config.lock_timeout_seconds == 0.5
        assert config.max_conflict_retries == 4
        assert config.log_level == "WARNING"

    def test_no_overrides_returns_base(self):
        base = KernelConfig(max_conflict_retries=1)
        assert config_from_env(base, environ={}) is base

    def test_empty_values_ignored(self):
        assert config_from_env(environ={"BAKERY_MAX_RETRIES": ""}) == KernelConfig()

    def test_unparseable_override(self):
        with pytest.raises(ValueError, match="BAKERY_MAX_RETRIES"):
            config_from_env(environ={"BAKERY_MAX_RETRIES": "many"})
