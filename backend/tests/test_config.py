"""Tests for settings models and the YAML loader.

Covers:
* defaults when no file exists
* loading a YAML file and the RELAY_SETTINGS_FILE override
* validation of signaling and logging options
* the cached get_config()/reset_config() pair
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from relay import config as config_module
from relay.config import (
    AppSettings,
    LoggingSettings,
    SignalingSettings,
    get_config,
    load_settings,
    reset_config,
)


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch):
    monkeypatch.delenv(config_module.SETTINGS_ENV_VAR, raising=False)
    reset_config()
    yield
    reset_config()


def _write(tmp_path, text: str):
    path = tmp_path / "relay.settings.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_signaling_defaults(self):
        cfg = SignalingSettings()
        assert cfg.max_participants == 0
        assert cfg.lock_stripes == 16
        assert cfg.room_topic_prefix == "/topic/room/"
        assert cfg.user_queue == "/queue/signal"

    def test_app_defaults(self):
        cfg = AppSettings()
        assert cfg.server.host == "0.0.0.0"
        assert cfg.server.port == 8000
        assert cfg.logging.level == "info"

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_settings(tmp_path / "absent.yaml")
        assert cfg == AppSettings()

    def test_empty_file_gives_defaults(self, tmp_path):
        assert load_settings(_write(tmp_path, "")) == AppSettings()


class TestLoadYaml:
    def test_partial_file_keeps_other_defaults(self, tmp_path):
        path = _write(tmp_path, "signaling:\n  max_participants: 4\n")
        cfg = load_settings(path)
        assert cfg.signaling.max_participants == 4
        assert cfg.signaling.lock_stripes == 16
        assert cfg.server.port == 8000

    def test_full_file(self, tmp_path):
        path = _write(tmp_path, (
            "server:\n  host: 127.0.0.1\n  port: 9090\n"
            "logging:\n  level: DEBUG\n"
            "signaling:\n  lock_stripes: 4\n  user_queue: /queue/rtc\n"
        ))
        cfg = load_settings(path)
        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == 9090
        assert cfg.logging.level == "debug"
        assert cfg.signaling.lock_stripes == 4
        assert cfg.signaling.user_queue == "/queue/rtc"

    def test_env_var_overrides_path(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "server:\n  port: 7000\n")
        monkeypatch.setenv(config_module.SETTINGS_ENV_VAR, str(path))
        assert load_settings().server.port == 7000


class TestValidation:
    def test_zero_lock_stripes_rejected(self):
        with pytest.raises(ValidationError):
            SignalingSettings(lock_stripes=0)

    def test_negative_max_participants_rejected(self):
        with pytest.raises(ValidationError):
            SignalingSettings(max_participants=-1)

    def test_level_is_lowercased(self):
        assert LoggingSettings(level="WARNING").level == "warning"

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError):
            LoggingSettings(level="verbose")

    def test_invalid_yaml_value_rejected(self, tmp_path):
        path = _write(tmp_path, "signaling:\n  lock_stripes: 0\n")
        with pytest.raises(ValidationError):
            load_settings(path)


class TestCachedConfig:
    def test_get_config_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setenv(config_module.SETTINGS_ENV_VAR, str(_write(tmp_path, "server:\n  port: 7001\n")))
        first = get_config()
        assert first.server.port == 7001
        assert get_config() is first

    def test_reset_config_reloads(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "server:\n  port: 7001\n")
        monkeypatch.setenv(config_module.SETTINGS_ENV_VAR, str(path))
        assert get_config().server.port == 7001

        path.write_text("server:\n  port: 7002\n", encoding="utf-8")
        reset_config()
        assert get_config().server.port == 7002
