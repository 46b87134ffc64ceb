from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from stencil.adapters.credentials import StaticCredentialStore
from stencil.app.acquisition import AcquireOptions, build_coordinator
from stencil.settings import RuntimeSettings
from stencil.utils import telemetry
from tests.helpers import NODE_API_MANIFEST, build_tarball

PACKUMENT_URL = "https://registry.npmjs.org/template-x"
TARBALL_URL = "https://registry.npmjs.org/template-x/-/template-x-1.0.0.tgz"


class DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, *, body: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self._body = body

    def json(self) -> Any:
        return self._payload

    def iter_content(self, chunk_size: int = 1024):
        yield self._body


class DummySession:
    def __init__(self, tarball: bytes) -> None:
        self._tarball = tarball
        self.urls: list[str] = []

    def get(self, url: str, headers: dict[str, str] | None = None, timeout: float | None = None, stream: bool = False) -> DummyResponse:
        self.urls.append(url)
        if url == PACKUMENT_URL:
            return DummyResponse(
                200,
                {
                    "name": "template-x",
                    "dist-tags": {"latest": "1.0.0"},
                    "versions": {
                        "1.0.0": {"dist": {"tarball": TARBALL_URL, "shasum": hashlib.sha1(self._tarball).hexdigest()}},
                    },
                },
            )
        if url == TARBALL_URL:
            return DummyResponse(200, body=self._tarball)
        return DummyResponse(404)


def _tarball() -> bytes:
    return build_tarball(
        {
            "package.json": json.dumps(NODE_API_MANIFEST),
            "src/index.js": "require('express')().listen(3000);\n",
            "README.md": "# template-x\n",
            ".gitignore": "node_modules/\n",
            "LICENSE": "MIT\n",
        }
    )


def test_registry_template_end_to_end(settings: RuntimeSettings) -> None:
    session = DummySession(_tarball())
    coordinator = build_coordinator(settings, credentials=StaticCredentialStore(), session=session)

    first = coordinator.acquire("template-x", "1.0.0")
    assert first.from_cache is False
    assert first.resolved_version == "1.0.0"
    assert first.path.parent == settings.cache_dir.resolve()
    assert (first.path / "package.json").is_file()

    second = coordinator.acquire("template-x", "1.0.0")
    assert second.from_cache is True
    assert session.urls.count(TARBALL_URL) == 1

    refreshed = coordinator.acquire("template-x", "1.0.0", AcquireOptions(policy="none"))
    assert refreshed.from_cache is False
    assert session.urls.count(TARBALL_URL) == 2

    events = list(telemetry.iter_events(settings))
    names = {event["event"] for event in events}
    assert {"acquire.download", "registry.download.done", "validation.completed", "cache.commit", "acquire.committed"} <= names
    assert all(event["component"] == "acquisition" for event in events)


def test_disabled_telemetry_writes_nothing(tmp_path: Path) -> None:
    settings = RuntimeSettings.for_home(tmp_path / "home", telemetry_enabled=False)
    coordinator = build_coordinator(settings, credentials=StaticCredentialStore(), session=DummySession(_tarball()))
    coordinator.acquire("template-x", "latest")
    assert not settings.telemetry_file.exists()
