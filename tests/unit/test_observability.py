# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


def test_log_event_emits_valid_jsonl(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    payload: dict[str, Any] = {"event_type": "TEST", "value": 123}
    logger.log_event(payload)

    assert len(captured) == 1
    assert json.loads(captured[0]) == payload


def test_events_below_minimum_level_are_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.configure(level="WARNING")
    logger.log_event({"event_type": "CHATTY", "level": "debug"})
    logger.log_event({"event_type": "ROUTINE"})
    logger.log_warning("ODD", session_id="s1")

    assert [json.loads(line)["event_type"] for line in captured] == ["ODD"]
    assert json.loads(captured[0])["level"] == "warning"


def test_key_value_format_when_json_lines_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.configure(level="debug", json_lines=False)
    logger.log_event({"event_type": "KV", "session_id": "s1"})

    assert captured == ['event_type="KV" session_id="s1"']


def test_unserializable_payload_falls_back_instead_of_raising(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)

    logger.log_event({"ts_ms": 5, "event_type": "BAD", "obj": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 5


def test_timed_emits_one_metric_and_never_leaks(logs) -> None:
    before = metrics.active_timer_count()

    with pytest.raises(RuntimeError):
        with metrics.timed("upstream_connect_latency", session_id="s1"):
            raise RuntimeError("connect blew up")

    assert metrics.active_timer_count() == before
    (metric,) = [e for e in logs if e["event_type"] == "METRIC"]
    assert metric["metric"] == "upstream_connect_latency"
    assert metric["session_id"] == "s1"
    assert metric["value"] >= 0
    assert metric["unit"] == "ms"


def test_stop_and_discard_timer(logs) -> None:
    kept = metrics.start_timer("session_duration")
    dropped = metrics.start_timer("session_duration")

    assert metrics.stop_timer(kept, session_id="s1") is not None
    assert metrics.stop_timer(kept) is None
    metrics.discard_timer(dropped)

    assert len([e for e in logs if e["event_type"] == "METRIC"]) == 1
