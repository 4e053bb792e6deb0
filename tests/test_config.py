"""
Tests for configuration loading.

Run with: pytest tests/test_config.py -v
"""

import pytest

import doorlock.config as config_module
from doorlock.config import (
    get_access_config,
    get_config,
    get_matching_config,
    get_section,
    get_server_config,
    load_config,
)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Drop the cached config before and after each test."""
    monkeypatch.setattr(config_module, "_config_instance", None)
    yield
    config_module._config_instance = None


class TestConfig:

    def test_default_values(self, monkeypatch):
        monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)

        assert get_matching_config()["distance_threshold"] == 0.6
        access = get_access_config()
        assert access["confidence_threshold"] == 85
        assert access["unlock_duration"] == 10
        assert get_section("enrollment")["sample_count"] == 10

    def test_singleton(self, monkeypatch):
        monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)
        assert get_config() is get_config()

    def test_missing_section(self, monkeypatch):
        monkeypatch.delenv(config_module.CONFIG_ENV_VAR, raising=False)
        with pytest.raises(KeyError):
            get_section("nonexistent")

    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "access:\n  confidence_threshold: 95\n"
            "api:\n  base_url: http://127.0.0.1:9000\n"
        )
        monkeypatch.setenv(config_module.CONFIG_ENV_VAR, str(path))

        assert get_access_config()["confidence_threshold"] == 95
        assert get_server_config() == {"host": "127.0.0.1", "port": 9000}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}
