from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from stencil.domain.cache import CacheIndex, CachePolicy, CacheTier
from stencil.domain.cache.index import STAGING_PREFIX, cache_key
from stencil.domain.errors import CacheIntegrityError
from tests.helpers import RecordingLogger, write_template


def _index(tmp_path: Path, **kwargs) -> CacheIndex:
    return CacheIndex(tmp_path / "cache", **kwargs)


def _commit(index: CacheIndex, tmp_path: Path, template_id: str = "template-x", version: str = "1.0.0"):
    source = write_template(tmp_path / f"src-{template_id}-{version}")
    return index.commit(template_id, version, source)


def test_cache_key_is_filesystem_safe() -> None:
    key = cache_key("@acme/starter", "^1.0.0")
    assert "/" not in key and "@" not in key and "^" not in key
    assert key != cache_key("acme/starter", "^1.0.0")


def test_commit_then_lookup_hits(tmp_path: Path) -> None:
    index = _index(tmp_path)
    committed = _commit(index, tmp_path)
    assert committed.path.parent == index.root
    assert committed.checksum

    found = index.lookup("template-x", "1.0.0")
    assert found is committed
    assert found.access_count == 1
    stats = index.stats()
    assert stats.hits == 1 and stats.commits == 1 and stats.entries == 1


def test_lookup_miss_for_unknown_key(tmp_path: Path) -> None:
    index = _index(tmp_path)
    assert index.lookup("template-x", "9.9.9") is None
    assert index.stats().misses == 1


def test_aggressive_tier_honours_five_minute_ttl(tmp_path: Path) -> None:
    index = _index(tmp_path, policy=CacheTier.AGGRESSIVE)
    entry = _commit(index, tmp_path)

    entry.last_accessed -= timedelta(minutes=4)
    assert index.lookup("template-x", "1.0.0") is entry

    entry.last_accessed -= timedelta(minutes=6)
    assert index.lookup("template-x", "1.0.0") is None
    assert not entry.path.exists()
    assert index.get("template-x", "1.0.0") is None


def test_none_tier_always_misses(tmp_path: Path) -> None:
    index = _index(tmp_path)
    _commit(index, tmp_path)
    assert index.lookup("template-x", "1.0.0", policy="none") is None


def test_ttl_override(tmp_path: Path) -> None:
    index = _index(tmp_path)
    entry = _commit(index, tmp_path)
    entry.last_accessed -= timedelta(seconds=30)
    policy = CachePolicy(tier=CacheTier.DEFAULT).with_ttl(timedelta(seconds=10))
    assert index.lookup("template-x", "1.0.0", policy=policy) is None


def test_tampered_entry_is_evicted(tmp_path: Path) -> None:
    logger = RecordingLogger()
    index = _index(tmp_path, logger=logger)
    entry = _commit(index, tmp_path)
    (entry.path / "src" / "index.js").write_text("process.exit(1)\n", encoding="utf-8")

    assert index.lookup("template-x", "1.0.0") is None
    assert not entry.path.exists()
    assert not entry.metadata_path.exists()
    assert "cache.integrity_failure" in logger.messages("warn")


def test_second_commit_is_discarded_when_entry_valid(tmp_path: Path) -> None:
    index = _index(tmp_path)
    first = _commit(index, tmp_path)
    other = write_template(tmp_path / "other", files={"README.md": "# other\n"})
    second = index.commit("template-x", "1.0.0", other)
    assert second is first
    assert (first.path / "README.md").read_text("utf-8") == "# template-x\n"


def test_replace_overwrites_entry(tmp_path: Path) -> None:
    index = _index(tmp_path)
    first = _commit(index, tmp_path)
    other = write_template(tmp_path / "other", files={"README.md": "# other\n"})
    second = index.commit("template-x", "1.0.0", other, replace=True)
    assert second is not first
    assert second.checksum != first.checksum
    assert (second.path / "README.md").read_text("utf-8") == "# other\n"


def test_commit_with_move_consumes_source(tmp_path: Path) -> None:
    index = _index(tmp_path)
    source = write_template(tmp_path / "download")
    entry = index.commit("template-x", "1.0.0", source, move=True)
    assert not source.exists()
    assert (entry.path / "package.json").exists()


def test_commit_rejects_checksum_mismatch(tmp_path: Path) -> None:
    index = _index(tmp_path)
    source = write_template(tmp_path / "download")
    with pytest.raises(CacheIntegrityError):
        index.commit("template-x", "1.0.0", source, checksum="0" * 64)
    assert index.get("template-x", "1.0.0") is None
    assert not any(path.name.startswith(STAGING_PREFIX) for path in index.root.iterdir())


def test_reload_restores_entries_from_sidecars(tmp_path: Path) -> None:
    index = _index(tmp_path)
    entry = _commit(index, tmp_path)

    reopened = _index(tmp_path)
    restored = reopened.get("template-x", "1.0.0")
    assert restored is not None
    assert restored.checksum == entry.checksum
    assert reopened.lookup("template-x", "1.0.0") is not None


def test_load_drops_orphans_and_staging(tmp_path: Path) -> None:
    index = _index(tmp_path)
    entry = _commit(index, tmp_path)
    (index.root / f"{STAGING_PREFIX}leftover").mkdir()
    (index.root / "broken.meta.json").write_text("{not json", encoding="utf-8")
    orphan = json.loads(entry.metadata_path.read_text("utf-8"))
    orphan["id"] = "ghost"
    orphan["path"] = str(index.root / "ghost")
    (index.root / "ghost.meta.json").write_text(json.dumps(orphan), encoding="utf-8")

    reopened = _index(tmp_path)
    assert [item.id for item in reopened.entries()] == [entry.id]
    assert not (index.root / f"{STAGING_PREFIX}leftover").exists()
    assert not (index.root / "ghost.meta.json").exists()
    assert len(reopened.warnings) == 2


def test_remove_and_clear_with_preserve(tmp_path: Path) -> None:
    index = _index(tmp_path)
    _commit(index, tmp_path, "template-x", "1.0.0")
    _commit(index, tmp_path, "template-x", "2.0.0")
    _commit(index, tmp_path, "keep-me", "1.0.0")

    assert index.remove("template-x", "2.0.0") is True
    assert index.remove("template-x", "2.0.0") is False
    assert index.clear(preserve=["keep-me"]) == 1
    assert [entry.template_id for entry in index.entries()] == ["keep-me"]


def test_prune_dry_run_then_apply(tmp_path: Path) -> None:
    index = _index(tmp_path, policy="aggressive")
    stale = _commit(index, tmp_path, "template-x", "1.0.0")
    fresh = _commit(index, tmp_path, "template-x", "2.0.0")
    stale.last_accessed -= timedelta(hours=1)

    report = index.prune(dry_run=True)
    assert report.removed == [stale.id]
    assert stale.path.exists()

    report = index.prune()
    assert report.removed == [stale.id]
    assert report.freed_bytes == stale.size
    assert not stale.path.exists()
    assert fresh.path.exists()


def test_max_entries_evicts_least_recently_used(tmp_path: Path) -> None:
    index = _index(tmp_path, max_entries=2)
    oldest = _commit(index, tmp_path, "template-x", "1.0.0")
    _commit(index, tmp_path, "template-x", "2.0.0")
    oldest.last_accessed -= timedelta(minutes=1)
    _commit(index, tmp_path, "template-x", "3.0.0")

    versions = [entry.version for entry in index.entries()]
    assert versions == ["2.0.0", "3.0.0"]
    assert index.stats().evictions == 1


def test_stats_hit_rate(tmp_path: Path) -> None:
    index = _index(tmp_path)
    _commit(index, tmp_path)
    index.lookup("template-x", "1.0.0")
    index.lookup("template-x", "0.0.1")
    stats = index.stats()
    assert stats.hit_rate == pytest.approx(0.5)
    assert stats.to_dict()["hitRate"] == 0.5
