"""Structured JSONL event log used as the default Logger."""

from __future__ import annotations

import json
import threading
import time
from functools import lru_cache
from typing import Any, Iterable, Iterator, Mapping

from jsonschema import Draft202012Validator

from stencil.ports.collaborators import Logger
from stencil.resources import load_schema
from stencil.settings import RuntimeSettings

LEVELS = {"debug", "info", "warn", "error"}
REDACTED = "***"
_SENSITIVE_MARKERS = ("token", "password", "secret", "authorization", "credential")
_WRITE_LOCK = threading.Lock()


def record_event(settings: RuntimeSettings, event: str, payload: dict[str, Any] | None = None, **extra: Any) -> None:
    record_structured_event(settings, event, payload=payload, **extra)


def record_structured_event(
    settings: RuntimeSettings,
    event: str,
    *,
    payload: Mapping[str, Any] | None = None,
    level: str = "info",
    status: str | None = None,
    component: str | None = None,
    correlation_id: str | None = None,
    duration_ms: float | None = None,
) -> None:
    if not settings.telemetry_enabled:
        return
    record: dict[str, Any] = {
        "ts": time.time(),
        "event": event,
        "payload": redact(payload or {}),
        "level": level,
    }
    if status:
        record["status"] = status
    if component:
        record["component"] = component
    if correlation_id:
        record["correlationId"] = correlation_id
    if duration_ms is not None:
        record["durationMs"] = duration_ms
    _validate_record(record)
    _validator().validate(record)
    log_path = settings.telemetry_file
    line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
    with _WRITE_LOCK:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as fh:
            fh.write(line)


def redact(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Replace values of credential-looking keys, recursing into mappings."""
    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        lowered = str(key).lower()
        if any(marker in lowered for marker in _SENSITIVE_MARKERS):
            cleaned[str(key)] = REDACTED
        elif isinstance(value, Mapping):
            cleaned[str(key)] = redact(value)
        else:
            cleaned[str(key)] = value
    return cleaned


def iter_events(settings: RuntimeSettings) -> Iterator[dict[str, Any]]:
    log_path = settings.telemetry_file
    if not log_path.exists():
        return
    with log_path.open("r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def summarize(events: Iterable[dict[str, Any]]) -> dict[str, Any]:
    total = 0
    by_event: dict[str, int] = {}
    by_level: dict[str, int] = {}
    for evt in events:
        name = evt.get("event", "unknown")
        by_event[name] = by_event.get(name, 0) + 1
        level = evt.get("level", "info")
        by_level[level] = by_level.get(level, 0) + 1
        total += 1
    return {"total": total, "by_event": by_event, "by_level": by_level}


def clear(settings: RuntimeSettings) -> None:
    log_path = settings.telemetry_file
    if log_path.exists():
        log_path.unlink()


class TelemetryLogger(Logger):
    """Logger port backed by the JSONL telemetry file."""

    def __init__(
        self,
        settings: RuntimeSettings,
        *,
        component: str = "stencil",
        correlation_id: str | None = None,
        min_level: str = "debug",
    ) -> None:
        if min_level not in LEVELS:
            raise ValueError(f"Unknown log level '{min_level}'")
        self._settings = settings
        self._component = component
        self._correlation_id = correlation_id
        self._threshold = _LEVEL_ORDER[min_level]

    def bind(self, *, component: str | None = None, correlation_id: str | None = None) -> "TelemetryLogger":
        bound = TelemetryLogger(
            self._settings,
            component=component or self._component,
            correlation_id=correlation_id or self._correlation_id,
        )
        bound._threshold = self._threshold
        return bound

    def log(self, level: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        if _LEVEL_ORDER.get(level, 0) < self._threshold:
            return
        payload = dict(fields or {})
        duration = payload.pop("durationMs", None)
        status = payload.pop("status", None)
        record_structured_event(
            self._settings,
            message,
            payload=payload,
            level=level,
            status=status,
            component=self._component,
            correlation_id=self._correlation_id,
            duration_ms=duration,
        )


_LEVEL_ORDER = {"debug": 10, "info": 20, "warn": 30, "error": 40}


def _validate_record(record: dict[str, Any]) -> None:
    if not isinstance(record.get("event"), str) or not record["event"].strip():
        raise ValueError("Telemetry event must have non-empty string 'event'")
    level = record.get("level", "info")
    if level not in LEVELS:
        raise ValueError(f"Telemetry level '{level}' is not supported")
    if "durationMs" in record and record["durationMs"] is not None:
        if not isinstance(record["durationMs"], (int, float)) or record["durationMs"] < 0:
            raise ValueError("Telemetry durationMs must be a non-negative number")
    # payload values must survive a JSON round trip before schema checks
    record["payload"] = json.loads(json.dumps(record["payload"], default=str))


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(load_schema("telemetry.schema.json"))


__all__ = [
    "LEVELS",
    "TelemetryLogger",
    "clear",
    "iter_events",
    "record_event",
    "record_structured_event",
    "redact",
    "summarize",
]
