# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from config import AppConfig, ConfigError

_VARS = (
    "ENV",
    "LOG_LEVEL",
    "OPENAI_API_KEY",
    "REALTIME_MODEL",
    "REALTIME_URL",
    "REALTIME_VOICE",
    "REALTIME_INSTRUCTIONS",
    "REALTIME_TURN_DETECTION",
    "REALTIME_VAD_THRESHOLD",
    "REALTIME_VAD_SILENCE_MS",
    "UPSTREAM_CONNECT_TIMEOUT_S",
    "ENABLE_JSON_LOGS",
    "CORS_ALLOW_ORIGINS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = AppConfig.load_from_env()

    assert cfg.openai_api_key is None
    assert cfg.realtime_model == "gpt-4o-mini-realtime-preview"
    assert cfg.realtime_voice == "alloy"
    assert cfg.server_vad_enabled
    assert cfg.vad_threshold == 0.5
    assert cfg.vad_silence_ms == 500
    assert cfg.cors_allow_origins == ("*",)
    assert cfg.enable_json_logs


def test_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("REALTIME_TURN_DETECTION", "none")
    monkeypatch.setenv("REALTIME_VAD_SILENCE_MS", "800")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("ENABLE_JSON_LOGS", "0")

    cfg = AppConfig.load_from_env()

    assert cfg.openai_api_key == "sk-test"
    assert not cfg.server_vad_enabled
    assert cfg.vad_silence_ms == 800
    assert cfg.cors_allow_origins == ("https://a.example", "https://b.example")
    assert not cfg.enable_json_logs


def test_unknown_turn_detection_mode(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REALTIME_TURN_DETECTION", "semantic")

    with pytest.raises(ConfigError):
        AppConfig.load_from_env()


def test_non_numeric_threshold(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REALTIME_VAD_THRESHOLD", "loud")

    with pytest.raises(ConfigError):
        AppConfig.load_from_env()
