"""Tests for settings loading."""

import pytest

from vigil.common.config import DATABASE, DEFAULT_CACHE_TTLS, load_settings


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("VIGIL_DATABASE", raising=False)
    settings = load_settings(tmp_path / "missing.toml")

    assert settings.database == DATABASE
    assert settings.log_level == "INFO"
    assert settings.batch_max_parallel == 5
    assert settings.cache_ttls == DEFAULT_CACHE_TTLS
    assert settings.default_retry["max_retries"] == 3


def test_values_from_config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("VIGIL_DATABASE", raising=False)
    config = tmp_path / "vigil.toml"
    config.write_text(
        """
[database]
path = "data/tasks.db"

[logging]
level = "debug"

[scheduler]
poll_interval = 15

[batch]
max_parallel = 3
chunk_delay = 0.5

[retention]
days = 7

[cache.ttl]
price-alert = 30

[retry]
max_retries = 5
"""
    )

    settings = load_settings(config)

    assert settings.database == "data/tasks.db"
    assert settings.log_level == "DEBUG"
    assert settings.poll_interval == 15.0
    assert settings.batch_max_parallel == 3
    assert settings.batch_chunk_delay == 0.5
    assert settings.retention_days == 7
    assert settings.cache_ttls["price-alert"] == 30
    assert settings.cache_ttls["defi-monitor"] == DEFAULT_CACHE_TTLS["defi-monitor"]
    assert settings.default_retry["max_retries"] == 5
    assert settings.default_retry["initial_delay"] == 1000


def test_environment_overrides_database(tmp_path, monkeypatch):
    config = tmp_path / "vigil.toml"
    config.write_text('[database]\npath = "from-file.db"\n')
    monkeypatch.setenv("VIGIL_DATABASE", str(tmp_path / "from-env.db"))

    assert load_settings(config).database == str(tmp_path / "from-env.db")


def test_invalid_max_parallel(tmp_path):
    config = tmp_path / "vigil.toml"
    config.write_text("[batch]\nmax_parallel = 0\n")

    with pytest.raises(ValueError):
        load_settings(config)
