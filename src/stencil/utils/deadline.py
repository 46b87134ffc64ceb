"""Monotonic deadlines threaded through blocking I/O."""

from __future__ import annotations

import time
from dataclasses import dataclass

from stencil.domain.errors import TransportTimeoutError


@dataclass(frozen=True)
class Deadline:
    expires_at: float | None

    @classmethod
    def after(cls, seconds: float | None) -> "Deadline":
        if seconds is None:
            return cls(expires_at=None)
        return cls(expires_at=time.monotonic() + max(0.0, float(seconds)))

    @classmethod
    def never(cls) -> "Deadline":
        return cls(expires_at=None)

    def remaining(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout(self, cap: float | None = None) -> float | None:
        """Seconds usable for the next blocking call, bounded by ``cap``."""
        remaining = self.remaining()
        if remaining is None:
            return cap
        if cap is None:
            return remaining
        return min(cap, remaining)

    def check(self, operation: str, subject: str | None = None) -> None:
        if self.expired():
            raise TransportTimeoutError(
                f"Deadline exceeded during {operation}",
                operation=operation,
                subject=subject,
            )


__all__ = ["Deadline"]
