"""Error taxonomy shared by the cache, transports and validator."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover
    from stencil.domain.validation import ValidationResult


class StencilError(RuntimeError):
    """Base class for every error raised by the acquisition core.

    Carries the operation that failed, the subject it failed on (template id,
    repository URL, filesystem path) and the time of failure.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        subject: str | None = None,
        cause: BaseException | str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.subject = subject
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "operation": self.operation,
            "subject": self.subject,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause is not None else None,
        }


class UnsupportedTemplateTypeError(StencilError):
    """Raised when an identifier matches neither registry nor git shape."""


class CacheIntegrityError(StencilError):
    """Raised when a cache entry is missing on disk or its content hash drifted."""


class UnsafePathError(StencilError):
    """Raised when a deletion targets a reserved system location."""


class TransportError(StencilError):
    """Generic network/process transport failure."""

    @property
    def repository(self) -> str | None:
        return self.subject


class AuthenticationError(TransportError):
    pass


class RepositoryNotFoundError(TransportError):
    pass


class RefNotFoundError(TransportError):
    pass


class TransportTimeoutError(TransportError):
    pass


class ValidationError(StencilError):
    """Raised when a downloaded template fails validation."""

    def __init__(self, result: "ValidationResult", *, operation: str = "validate", subject: str | None = None) -> None:
        codes = ", ".join(issue.code for issue in result.errors) or "unknown"
        super().__init__(f"Template validation failed: {codes}", operation=operation, subject=subject)
        self.result = result


class ValidationTimeoutError(ValidationError):
    pass


__all__ = [
    "StencilError",
    "UnsupportedTemplateTypeError",
    "CacheIntegrityError",
    "UnsafePathError",
    "TransportError",
    "AuthenticationError",
    "RepositoryNotFoundError",
    "RefNotFoundError",
    "TransportTimeoutError",
    "ValidationError",
    "ValidationTimeoutError",
]
