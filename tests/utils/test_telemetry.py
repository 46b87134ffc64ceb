from __future__ import annotations

import pytest
from jsonschema import ValidationError as SchemaValidationError

from stencil.settings import RuntimeSettings
from stencil.utils import telemetry
from stencil.utils.telemetry import TelemetryLogger


def test_structured_event_is_appended(settings: RuntimeSettings) -> None:
    telemetry.record_structured_event(
        settings,
        "cache.commit",
        payload={"key": "template-x-abc", "token": "s3cr3t"},
        status="ok",
        component="cache",
        correlation_id="abc123",
        duration_ms=12.5,
    )
    telemetry.record_event(settings, "cache.hit", {"key": "template-x-abc"})

    events = list(telemetry.iter_events(settings))
    assert [event["event"] for event in events] == ["cache.commit", "cache.hit"]
    assert events[0]["payload"]["token"] == telemetry.REDACTED
    assert events[0]["durationMs"] == 12.5
    assert events[0]["correlationId"] == "abc123"
    assert telemetry.summarize(events) == {
        "total": 2,
        "by_event": {"cache.commit": 1, "cache.hit": 1},
        "by_level": {"info": 2},
    }


def test_invalid_records_are_rejected(settings: RuntimeSettings) -> None:
    with pytest.raises(ValueError):
        telemetry.record_structured_event(settings, "", payload={})
    with pytest.raises(ValueError):
        telemetry.record_structured_event(settings, "x", level="fatal")
    with pytest.raises(ValueError):
        telemetry.record_structured_event(settings, "x", duration_ms=-1)
    with pytest.raises(SchemaValidationError):
        telemetry.record_structured_event(settings, "x", component=42)  # type: ignore[arg-type]
    assert list(telemetry.iter_events(settings)) == []


def test_redact_recurses_into_mappings() -> None:
    cleaned = telemetry.redact({"registry": {"authToken": "abc", "url": "https://x"}, "Password": "p"})
    assert cleaned == {"registry": {"authToken": "***", "url": "https://x"}, "Password": "***"}


def test_logger_threshold_and_binding(settings: RuntimeSettings) -> None:
    logger = TelemetryLogger(settings, component="git", min_level="info")
    logger.debug("git.clone.start", {"repository": "x"})
    logger.info("git.clone.done", {"repository": "x", "durationMs": 3.0, "status": "ok"})
    logger.bind(correlation_id="req-1").warn("git.retry", {})

    events = list(telemetry.iter_events(settings))
    assert [event["event"] for event in events] == ["git.clone.done", "git.retry"]
    assert events[0]["status"] == "ok"
    assert "durationMs" not in events[0]["payload"]
    assert events[1]["correlationId"] == "req-1"
    assert events[1]["level"] == "warn"

    telemetry.clear(settings)
    assert list(telemetry.iter_events(settings)) == []


def test_unknown_min_level(settings: RuntimeSettings) -> None:
    with pytest.raises(ValueError):
        TelemetryLogger(settings, min_level="trace")
