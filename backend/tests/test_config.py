"""Tests for settings loading and path resolution."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from chatrelay import config as config_module
from chatrelay.config import AppSettings, get_config, load_config, reset_config


def test_missing_file_gives_defaults(tmp_path):
    cfg = load_config(settings_path=tmp_path / "absent.yaml")
    assert cfg.server.port == 3000
    assert cfg.history.window_size == 20
    assert cfg.history.welcome_sender == "System"
    assert cfg.limits.max_display_name_length == 64
    assert cfg.logging.level == "info"


def test_values_loaded_from_yaml(tmp_path):
    settings_file = tmp_path / "relay.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 9000\n"
        "history:\n"
        "  window_size: 50\n"
        "  persistence_timeout_seconds: 1.5\n"
        "  welcome_message: Hello there\n"
        "limits:\n"
        "  max_message_length: 500\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert cfg.server.port == 9000
    assert cfg.history.window_size == 50
    assert cfg.history.persistence_timeout_seconds == 1.5
    assert cfg.history.welcome_message == "Hello there"
    assert cfg.limits.max_message_length == 500
    assert cfg.logging.level == "debug"


def test_relative_db_path_resolves_from_settings_dir(tmp_path):
    settings_file = tmp_path / "relay.settings.yaml"
    settings_file.write_text("history:\n  db_path: data/history.duckdb\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.history.db_path) == tmp_path.resolve() / "data" / "history.duckdb"


def test_absolute_and_memory_db_paths_unchanged(tmp_path):
    absolute = tmp_path / "abs" / "history.duckdb"
    settings_file = tmp_path / "relay.settings.yaml"
    settings_file.write_text(f"history:\n  db_path: {absolute}\n", encoding="utf-8")
    assert Path(load_config(settings_path=settings_file).history.db_path) == absolute

    settings_file.write_text("history:\n  db_path: ':memory:'\n", encoding="utf-8")
    assert load_config(settings_path=settings_file).history.db_path == ":memory:"


def test_env_var_selects_settings_file(tmp_path, monkeypatch):
    settings_file = tmp_path / "custom.yaml"
    settings_file.write_text("server:\n  port: 4321\n", encoding="utf-8")
    monkeypatch.setenv(config_module.SETTINGS_ENV_VAR, str(settings_file))

    assert load_config().server.port == 4321


def test_get_config_is_cached(tmp_path, monkeypatch):
    monkeypatch.setenv(config_module.SETTINGS_ENV_VAR, str(tmp_path / "absent.yaml"))
    reset_config()
    try:
        assert get_config() is get_config()
    finally:
        reset_config()


@pytest.mark.parametrize("data", [
    {"history": {"window_size": 0}},
    {"history": {"persistence_timeout_seconds": 0}},
    {"limits": {"max_message_length": 0}},
    {"logging": {"level": "chatty"}},
])
def test_invalid_settings_rejected(data):
    with pytest.raises(ValidationError):
        AppSettings(**data)
