from __future__ import annotations

import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Mapping

import pytest

from stencil.adapters.fs_copier import ShutilFileCopier
from stencil.app.acquisition import AcquireOptions, AcquisitionCoordinator
from stencil.app.validation import checks
from stencil.domain.cache import CacheIndex
from stencil.domain.errors import (
    RepositoryNotFoundError,
    UnsupportedTemplateTypeError,
    ValidationError,
    ValidationTimeoutError,
)
from stencil.domain.validation import ValidationOptions
from stencil.ports.collaborators import VariableSubstitutor
from tests.helpers import FakeSource, RecordingLogger, write_template


class BraceSubstitutor(VariableSubstitutor):
    def apply(self, directory: Path, variables: Mapping[str, Any]) -> None:
        for path in directory.rglob("*"):
            if not path.is_file():
                continue
            text = path.read_text(encoding="utf-8")
            for key, value in variables.items():
                text = text.replace("{{" + key + "}}", str(value))
            path.write_text(text, encoding="utf-8")


def _coordinator(tmp_path: Path, registry: FakeSource, git: FakeSource | None = None, **kwargs: Any) -> AcquisitionCoordinator:
    logger = kwargs.pop("logger", RecordingLogger())
    index = CacheIndex(tmp_path / "cache", logger=logger)
    return AcquisitionCoordinator(
        index,
        registry=registry,
        git=git or FakeSource(),
        logger=logger,
        temp_dir=tmp_path / "tmp",
        **kwargs,
    )


def test_second_acquire_is_served_from_cache(tmp_path: Path) -> None:
    source = FakeSource()
    coordinator = _coordinator(tmp_path, source)

    first = coordinator.acquire("template-x", "1.0.0")
    second = coordinator.acquire("template-x", "1.0.0")

    assert first.from_cache is False
    assert first.validation is not None and first.validation.is_valid
    assert second.from_cache is True
    assert second.path == first.path
    assert second.entry.checksum == first.entry.checksum
    assert source.calls == [("template-x", "1.0.0")]
    assert list((tmp_path / "tmp").iterdir()) == []


def test_concurrent_misses_download_once(tmp_path: Path) -> None:
    gate = threading.Event()
    source = FakeSource(gate=gate)
    coordinator = _coordinator(tmp_path, source)

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(coordinator.acquire, "template-x", "1.0.0") for _ in range(2)]
        time.sleep(0.2)
        gate.set()
        results = [future.result(timeout=10) for future in futures]

    assert len(source.calls) == 1
    assert sorted(result.from_cache for result in results) == [False, True]
    assert results[0].path == results[1].path


def test_zero_ttl_forces_redownload(tmp_path: Path) -> None:
    source = FakeSource()
    coordinator = _coordinator(tmp_path, source)
    options = AcquireOptions(policy="none")

    first = coordinator.acquire("template-x", "1.0.0", options)
    second = coordinator.acquire("template-x", "1.0.0", options)

    assert first.from_cache is False and second.from_cache is False
    assert len(source.calls) == 2
    assert second.path.exists()
    assert len(coordinator.index.entries()) == 1


def test_force_download_replaces_entry(tmp_path: Path) -> None:
    versions = iter(["# first\n", "# second\n"])
    source = FakeSource(lambda root: write_template(root, files={"README.md": next(versions)}))
    coordinator = _coordinator(tmp_path, source)

    first = coordinator.acquire("template-x", "1.0.0")
    forced = coordinator.acquire("template-x", "1.0.0", AcquireOptions(force_download=True))

    assert forced.from_cache is False
    assert forced.entry.checksum != first.entry.checksum
    assert (forced.path / "README.md").read_text("utf-8") == "# second\n"


def test_validation_failure_leaves_cache_untouched(tmp_path: Path) -> None:
    source = FakeSource(lambda root: write_template(root, files={"bin/install.exe": "MZ"}))
    logger = RecordingLogger()
    coordinator = _coordinator(tmp_path, source, logger=logger)

    with pytest.raises(ValidationError) as excinfo:
        coordinator.acquire("template-x", "1.0.0")

    assert excinfo.value.result.error_codes == ["SUSPICIOUS_FILE_EXTENSION"]
    assert coordinator.index.entries() == []
    assert list(coordinator.index.root.iterdir()) == []
    assert list((tmp_path / "tmp").iterdir()) == []
    assert "acquire.failed" in logger.messages("error")


def test_unreadable_manifest_is_a_validation_error(tmp_path: Path) -> None:
    def broken(root: Path) -> None:
        write_template(root)
        (root / "package.json").write_text("{not json", encoding="utf-8")

    coordinator = _coordinator(tmp_path, FakeSource(broken))
    with pytest.raises(ValidationError) as excinfo:
        coordinator.acquire("template-x", "1.0.0")
    assert excinfo.value.result.error_codes == ["INVALID_MANIFEST"]


def test_validation_timeout_is_raised(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def stuck(ctx: checks.CheckContext) -> checks.CheckOutcome:
        while True:
            ctx.checkpoint()
            time.sleep(0.01)

    monkeypatch.setitem(checks.CHECKS, "structure", stuck)
    coordinator = _coordinator(tmp_path, FakeSource(), validation_options=ValidationOptions(timeout=0.2))
    with pytest.raises(ValidationTimeoutError):
        coordinator.acquire("template-x", "1.0.0")
    assert coordinator.index.entries() == []


def test_transport_errors_propagate_and_clean_up(tmp_path: Path) -> None:
    def missing(root: Path) -> None:
        root.mkdir(parents=True, exist_ok=True)
        raise RepositoryNotFoundError("no such package", operation="download", subject="template-x")

    coordinator = _coordinator(tmp_path, FakeSource(missing))
    with pytest.raises(RepositoryNotFoundError):
        coordinator.acquire("template-x", "1.0.0")
    assert list((tmp_path / "tmp").iterdir()) == []


def test_identifier_selects_transport(tmp_path: Path) -> None:
    registry = FakeSource()
    git = FakeSource()
    coordinator = _coordinator(tmp_path, registry, git)

    coordinator.acquire("https://github.com/acme/template-x.git", "v1.0.0")
    coordinator.acquire("@acme/template-x", "1.0.0")

    assert git.calls == [("https://github.com/acme/template-x.git", "v1.0.0")]
    assert registry.calls == [("@acme/template-x", "1.0.0")]


@pytest.mark.parametrize("template_id", ["", "Not A Package!", "UPPER/case"])
def test_unsupported_identifier_is_rejected(tmp_path: Path, template_id: str) -> None:
    source = FakeSource()
    coordinator = _coordinator(tmp_path, source)
    with pytest.raises(UnsupportedTemplateTypeError):
        coordinator.acquire(template_id, "1.0.0")
    assert source.calls == []


def test_materialize_copies_and_substitutes(tmp_path: Path) -> None:
    source = FakeSource(lambda root: write_template(root, files={"README.md": "# {{name}}\n"}))
    coordinator = _coordinator(tmp_path, source, copier=ShutilFileCopier(), substitutor=BraceSubstitutor())

    result = coordinator.acquire("template-x", "1.0.0")
    destination = coordinator.materialize(result, tmp_path / "project", {"name": "my-api"})

    assert (destination / "README.md").read_text("utf-8") == "# my-api\n"
    assert (result.path / "README.md").read_text("utf-8") == "# {{name}}\n"
    assert coordinator.acquire("template-x", "1.0.0").from_cache is True


def test_result_to_dict(tmp_path: Path) -> None:
    coordinator = _coordinator(tmp_path, FakeSource())
    payload = coordinator.acquire("template-x", "1.0.0").to_dict()
    assert payload["fromCache"] is False
    assert payload["templateId"] == "template-x"
    assert payload["validation"]["isValid"] is True
    json.dumps(payload)
