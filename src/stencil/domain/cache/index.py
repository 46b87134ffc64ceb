"""Keyed collection of cache entries with TTL and integrity enforcement."""

from __future__ import annotations

import json
import re
import shutil
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from hashlib import sha256
from pathlib import Path
from typing import Any, Iterable, Iterator
from uuid import uuid4

from stencil.domain.errors import CacheIntegrityError
from stencil.ports.collaborators import FileCopier, Logger, NullLogger
from stencil.utils.locks import KeyedLocks
from stencil.utils.paths import directory_size, remove_tree

from .checksum import compute_checksum
from .entry import METADATA_SUFFIX, CacheEntry
from .policy import CachePolicy, CacheTier

STAGING_PREFIX = ".staging-"
_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_SLUG = 80


def cache_key(template_id: str, version: str) -> str:
    raw = f"{template_id}_{version}"
    slug = _SLUG_RE.sub("-", raw).strip("-.")[:_MAX_SLUG] or "template"
    return f"{slug}-{sha256(raw.encode('utf-8')).hexdigest()[:10]}"


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    commits: int = 0
    entries: int = 0
    total_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "commits": self.commits,
            "entries": self.entries,
            "totalSize": self.total_size,
            "hitRate": round(self.hit_rate, 4),
        }


@dataclass
class PruneReport:
    dry_run: bool
    removed: list[str] = field(default_factory=list)
    freed_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"dryRun": self.dry_run, "removed": list(self.removed), "freedBytes": self.freed_bytes}


class CacheIndex:
    """Maps ``(template_id, version)`` to at most one ``CacheEntry`` under ``root``.

    All mutation of the cache root goes through this object. A lookup never
    returns an expired or tampered entry: such entries are evicted and reported
    as a miss.
    """

    def __init__(
        self,
        root: Path,
        *,
        policy: CachePolicy | CacheTier | str | None = None,
        max_entries: int | None = None,
        copier: FileCopier | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._policy = CachePolicy.from_value(policy)
        self._max_entries = max_entries
        self._copier = copier
        self._logger = logger or NullLogger()
        self._entries: dict[str, CacheEntry] = {}
        self._guard = threading.RLock()
        self._locks = KeyedLocks()
        self._stats = CacheStats()
        self.warnings: list[str] = []
        self.load()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    def key_for(self, template_id: str, version: str) -> str:
        return cache_key(template_id, version)

    @contextmanager
    def lock_for(self, template_id: str, version: str) -> Iterator[None]:
        with self._locks.hold(self.key_for(template_id, version)):
            yield

    def load(self) -> None:
        """Rebuild the in-memory index from sidecar files under the root."""
        with self._guard:
            self._entries.clear()
            for stale in self._root.glob(f"{STAGING_PREFIX}*"):
                remove_tree(stale, operation="cache.load")
            for metadata_path in sorted(self._root.glob(f"*{METADATA_SUFFIX}")):
                try:
                    entry = CacheEntry.load_metadata(metadata_path)
                except (OSError, ValueError, KeyError, json.JSONDecodeError) as exc:
                    self._warn(f"ignoring unreadable cache metadata {metadata_path.name}: {exc}")
                    continue
                expected = self._root / entry.id
                if entry.path != expected or not expected.is_dir():
                    self._warn(f"dropping orphaned cache metadata {metadata_path.name}")
                    metadata_path.unlink()
                    continue
                self._entries[entry.id] = entry

    def entries(self) -> list[CacheEntry]:
        with self._guard:
            return sorted(self._entries.values(), key=lambda item: (item.template_id, item.version))

    def get(self, template_id: str, version: str) -> CacheEntry | None:
        with self._guard:
            return self._entries.get(self.key_for(template_id, version))

    def lookup(
        self,
        template_id: str,
        version: str,
        policy: CachePolicy | CacheTier | str | None = None,
    ) -> CacheEntry | None:
        effective = self._policy if policy is None else CachePolicy.from_value(policy)
        key = self.key_for(template_id, version)
        with self._locks.hold(key):
            with self._guard:
                entry = self._entries.get(key)
            if entry is None:
                self._record_miss(template_id, version, "absent")
                return None
            if effective.always_miss or entry.is_expired(effective.ttl):
                self._evict(entry, reason="expired")
                self._record_miss(template_id, version, "expired")
                return None
            try:
                entry.validate()
            except CacheIntegrityError as exc:
                self._logger.warn("cache.integrity_failure", {"key": key, "error": str(exc)})
                self._evict(entry, reason="integrity")
                self._record_miss(template_id, version, "integrity")
                return None
            entry.touch()
            self._persist(entry)
            with self._guard:
                self._stats.hits += 1
            self._logger.debug("cache.hit", {"templateId": template_id, "version": version, "key": key})
            return entry

    def commit(
        self,
        template_id: str,
        version: str,
        source_dir: Path,
        *,
        checksum: str | None = None,
        replace: bool = False,
        move: bool = False,
    ) -> CacheEntry:
        """Store ``source_dir`` as the entry for the key and return it.

        When a valid entry already holds the key and ``replace`` is false the
        existing entry wins and the new content is discarded.
        """
        key = self.key_for(template_id, version)
        source = Path(source_dir)
        with self._locks.hold(key):
            with self._guard:
                existing = self._entries.get(key)
            if existing is not None:
                if not replace and self._still_valid(existing):
                    self._logger.info("cache.commit_discarded", {"key": key, "templateId": template_id})
                    return existing
                self._evict(existing, reason="replaced")
            self._enforce_capacity()

            target = self._root / key
            if target.exists():
                remove_tree(target, operation="cache.commit")
            staging = self._root / f"{STAGING_PREFIX}{key}-{uuid4().hex}"
            try:
                self._materialise(source, staging, move=move)
                actual = compute_checksum(staging)
                if checksum is not None and checksum != actual:
                    raise CacheIntegrityError(
                        f"Content changed while committing {key}",
                        operation="cache.commit",
                        subject=key,
                    )
                staging.rename(target)
            except Exception:
                if staging.exists():
                    remove_tree(staging, operation="cache.commit")
                raise

            entry = CacheEntry(
                id=key,
                template_id=template_id,
                version=version,
                path=target,
                size=directory_size(target),
                checksum=actual,
            )
            with self._guard:
                self._entries[key] = entry
                self._stats.commits += 1
            self._persist(entry)
            self._logger.info(
                "cache.commit",
                {"key": key, "templateId": template_id, "version": version, "size": entry.size},
            )
            return entry

    def remove(self, template_id: str, version: str) -> bool:
        key = self.key_for(template_id, version)
        with self._locks.hold(key):
            with self._guard:
                entry = self._entries.get(key)
            if entry is None:
                return False
            self._evict(entry, reason="removed")
            return True

    def clear(self, preserve: Iterable[str] = ()) -> int:
        """Remove every entry except those whose template id is in ``preserve``."""
        keep = set(preserve)
        removed = 0
        for entry in self.entries():
            if entry.template_id in keep:
                continue
            with self._locks.hold(entry.id):
                self._evict(entry, reason="cleared")
            removed += 1
        self._logger.info("cache.clear", {"removed": removed, "preserved": sorted(keep)})
        return removed

    def prune(
        self,
        *,
        dry_run: bool = False,
        policy: CachePolicy | CacheTier | str | None = None,
    ) -> PruneReport:
        """Drop expired or invalid entries; ``dry_run`` only reports them."""
        effective = self._policy if policy is None else CachePolicy.from_value(policy)
        report = PruneReport(dry_run=dry_run)
        for entry in self.entries():
            with self._locks.hold(entry.id):
                stale = effective.always_miss or entry.is_expired(effective.ttl) or not self._still_valid(entry)
                if not stale:
                    continue
                report.removed.append(entry.id)
                report.freed_bytes += entry.size
                if not dry_run:
                    self._evict(entry, reason="pruned")
        self._logger.info("cache.prune", report.to_dict())
        return report

    def stats(self) -> CacheStats:
        with self._guard:
            entries = list(self._entries.values())
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                commits=self._stats.commits,
                entries=len(entries),
                total_size=sum(entry.size for entry in entries),
            )

    # ----- Internals -----

    def _still_valid(self, entry: CacheEntry) -> bool:
        try:
            return entry.validate()
        except CacheIntegrityError:
            return False

    def _materialise(self, source: Path, staging: Path, *, move: bool) -> None:
        if move:
            try:
                source.rename(staging)
                return
            except OSError:
                # cross-device rename; fall back to copying
                if not source.exists():
                    raise
        if self._copier is not None:
            self._copier.copy_tree(source, staging)
        else:
            shutil.copytree(source, staging, symlinks=True)

    def _enforce_capacity(self) -> None:
        if not self._max_entries:
            return
        with self._guard:
            ordered = sorted(self._entries.values(), key=lambda item: item.last_accessed)
            overflow = len(ordered) - self._max_entries + 1
        for entry in ordered[: max(0, overflow)]:
            self._evict(entry, reason="capacity")

    def _evict(self, entry: CacheEntry, *, reason: str) -> None:
        with self._guard:
            self._entries.pop(entry.id, None)
            self._stats.evictions += 1
        entry.remove()
        self._logger.debug("cache.evict", {"key": entry.id, "reason": reason})

    def _persist(self, entry: CacheEntry) -> None:
        for warning in entry.save_metadata():
            self._warn(warning)

    def _record_miss(self, template_id: str, version: str, reason: str) -> None:
        with self._guard:
            self._stats.misses += 1
        self._logger.debug("cache.miss", {"templateId": template_id, "version": version, "reason": reason})

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        self._logger.warn("cache.warning", {"message": message})


__all__ = ["CacheIndex", "CacheStats", "PruneReport", "cache_key", "STAGING_PREFIX"]
