"""Validation verdict and options value objects."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from hashlib import sha256
from types import MappingProxyType
from typing import Any, Iterable, Mapping

RULESET_VERSION = "2024.1"
CHECK_ORDER: tuple[str, ...] = ("schema", "security", "structure", "dependency", "version")
TIMEOUT_CODE = "VALIDATION_TIMEOUT"


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "errors", tuple(self.errors))
        object.__setattr__(self, "warnings", tuple(self.warnings))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> list[str]:
        return [issue.code for issue in self.errors]

    @property
    def warning_codes(self) -> list[str]:
        return [issue.code for issue in self.warnings]

    @property
    def timed_out(self) -> bool:
        return any(issue.code == TIMEOUT_CODE for issue in self.errors)

    @classmethod
    def timeout(cls, seconds: float) -> "ValidationResult":
        return cls(
            errors=(ValidationIssue(TIMEOUT_CODE, f"Validation exceeded {seconds:g}s"),),
            metadata={"timedOut": True, "timeoutSeconds": seconds},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "metadata": json.loads(json.dumps(dict(self.metadata), default=str)),
        }


@dataclass(frozen=True)
class ValidationOptions:
    path: str | None = None
    template_type: str | None = None
    strict_mode: bool = False
    enable_schema_validation: bool = True
    enable_security_validation: bool = True
    enable_structure_validation: bool = True
    enable_dependency_validation: bool = True
    enable_version_validation: bool = True
    host_version: str | None = None
    previous_version: str | None = None
    timeout: float | None = 30.0

    def enabled(self, check: str) -> bool:
        return bool(getattr(self, f"enable_{check}_validation"))

    def merged(self, **overrides: Any) -> "ValidationOptions":
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)

    def fingerprint(self) -> str:
        payload = asdict(self)
        payload.pop("path", None)
        payload.pop("timeout", None)
        return sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def result_cache_key(
    template_id: str | None,
    version: str | None,
    tree_fingerprint: str,
    options: ValidationOptions,
    ruleset_version: str = RULESET_VERSION,
) -> str:
    parts: Iterable[str] = (
        template_id or "",
        version or "",
        tree_fingerprint,
        ruleset_version,
        options.fingerprint(),
    )
    return sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


__all__ = [
    "ValidationIssue",
    "ValidationResult",
    "ValidationOptions",
    "RULESET_VERSION",
    "CHECK_ORDER",
    "TIMEOUT_CODE",
    "result_cache_key",
]
