"""One on-disk materialisation of a template version."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from stencil.domain.errors import CacheIntegrityError
from stencil.utils.paths import directory_size, remove_tree

from .checksum import compute_checksum

METADATA_SUFFIX = ".meta.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _utcnow()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()


@dataclass(eq=False)
class CacheEntry:
    id: str
    template_id: str
    version: str
    path: Path
    size: int = 0
    checksum: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_accessed: datetime = field(default_factory=_utcnow)
    access_count: int = 0
    is_valid: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            id=str(data["id"]),
            template_id=str(data["templateId"]),
            version=str(data["version"]),
            path=Path(data["path"]),
            size=int(data.get("size") or 0),
            checksum=data.get("checksum") or None,
            created_at=_parse_timestamp(data.get("createdAt")),
            last_accessed=_parse_timestamp(data.get("lastAccessed")),
            access_count=int(data.get("accessCount") or 0),
            is_valid=bool(data.get("isValid", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "templateId": self.template_id,
            "version": self.version,
            "path": str(self.path),
            "size": self.size,
            "createdAt": self.created_at.isoformat(),
            "lastAccessed": self.last_accessed.isoformat(),
            "accessCount": self.access_count,
            "checksum": self.checksum,
            "isValid": self.is_valid,
        }

    @property
    def metadata_path(self) -> Path:
        return self.path.parent / f"{self.path.name}{METADATA_SUFFIX}"

    def validate(self) -> bool:
        """Check the entry against disk.

        The full-tree hash is recomputed only when a checksum was recorded.
        Raises ``CacheIntegrityError`` and flags the entry invalid on failure.
        """
        if not self.path.exists():
            self.is_valid = False
            raise CacheIntegrityError(
                f"Cache path {self.path} does not exist",
                operation="cache.validate",
                subject=self.id,
            )
        if not self.path.is_dir():
            self.is_valid = False
            raise CacheIntegrityError(
                f"Cache path {self.path} is not a directory",
                operation="cache.validate",
                subject=self.id,
            )
        if self.checksum:
            actual = compute_checksum(self.path)
            if actual != self.checksum:
                self.is_valid = False
                raise CacheIntegrityError(
                    f"Checksum mismatch for {self.id}: expected {self.checksum}, got {actual}",
                    operation="cache.validate",
                    subject=self.id,
                )
        self.is_valid = True
        return True

    def touch(self, now: datetime | None = None) -> None:
        with self._lock:
            self.last_accessed = now or _utcnow()
            self.access_count += 1

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        current = now or _utcnow()
        return current - self.last_accessed >= ttl

    def refresh(self) -> None:
        """Recompute size and checksum from the current tree."""
        self.size = directory_size(self.path)
        self.checksum = compute_checksum(self.path)
        self.is_valid = True

    def remove(self) -> None:
        remove_tree(self.path, operation="cache.remove")
        metadata = self.metadata_path
        if metadata.exists():
            metadata.unlink()
        self.is_valid = False

    def save_metadata(self) -> list[str]:
        """Write the sidecar; returns warnings instead of raising on I/O failure."""
        payload = json.dumps(self.to_dict(), ensure_ascii=False, indent=2) + "\n"
        try:
            self.metadata_path.write_text(payload, encoding="utf-8")
        except OSError as exc:
            return [f"failed to write cache metadata for {self.id}: {exc}"]
        return []

    @classmethod
    def load_metadata(cls, metadata_path: Path) -> "CacheEntry":
        data = json.loads(metadata_path.read_text(encoding="utf-8"))
        return cls.from_dict(data)


__all__ = ["CacheEntry", "METADATA_SUFFIX"]
