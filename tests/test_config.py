"""Tests for configuration loading"""

import pytest

from posterm.common.config import (
    StorageBackend,
    load_config_file,
    load_terminal_config,
)
from posterm.common.exceptions import ConfigError


def test_defaults_from_empty_mapping():
    config = load_terminal_config({}, env={})

    assert config.cache.backend is StorageBackend.SQLITE
    assert config.sync.max_retries == 5
    assert config.sync.backoff_base_ms == 1000
    assert config.sync.backoff_cap_ms == 60000
    assert config.cache.tables_revalidate_minutes == 1.0
    assert config.cache.tables_expire_minutes == 5.0
    assert config.cloud.request_timeout_s == 15.0
    assert config.health_port == 8090


def test_environment_overrides_file_values():
    data = {
        "cloud": {"url": "https://file.example.com/", "token": "file-token"},
        "outlet": {"tenant_id": "t-file", "outlet_id": "o-file"},
    }
    env = {
        "POSTERM_CLOUD_URL": "https://env.example.com/",
        "POSTERM_TOKEN": "env-token",
        "POSTERM_OUTLET_ID": "o-env",
    }

    config = load_terminal_config(data, env=env)

    assert config.cloud.url == "https://env.example.com"
    assert config.cloud.token == "env-token"
    assert config.outlet.tenant_id == "t-file"
    assert config.outlet.to_context().outlet_id == "o-env"


@pytest.mark.parametrize(
    "data",
    [
        {"cache": {"backend": "redis"}},
        {"sync": {"max_retries": 0}},
        {"sync": {"flush_interval_s": -1}},
        {"cache": {"tables_expire_minutes": 0}},
        {"sync": {"backoff_base_ms": 5000, "backoff_cap_ms": 1000}},
        {"cloud": {"request_timeout_s": "fast"}},
    ],
)
def test_invalid_values_raise_config_error(data):
    with pytest.raises(ConfigError):
        load_terminal_config(data, env={})


def test_load_config_file(tmp_path, monkeypatch):
    for name in ("POSTERM_CLOUD_URL", "POSTERM_TOKEN", "POSTERM_TENANT_ID", "POSTERM_OUTLET_ID"):
        monkeypatch.delenv(name, raising=False)

    path = tmp_path / "config.yaml"
    path.write_text(
        "cloud:\n"
        "  url: https://pos.example.com\n"
        "cache:\n"
        "  backend: memory\n"
        "sync:\n"
        "  max_retries: 3\n"
        "health_port: 9100\n"
    )

    config = load_config_file(path)

    assert config.cloud.url == "https://pos.example.com"
    assert config.cache.backend is StorageBackend.MEMORY
    assert config.sync.max_retries == 3
    assert config.health_port == 9100


def test_missing_file_yields_defaults(tmp_path):
    config = load_config_file(tmp_path / "absent.yaml")
    assert config.sync.flush_interval_s == 30.0


def test_malformed_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("cloud: [unterminated\n")
    with pytest.raises(ConfigError):
        load_config_file(path)


def test_non_mapping_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config_file(path)
