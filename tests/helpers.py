from __future__ import annotations

import io
import json
import tarfile
import threading
from pathlib import Path
from typing import Any, Callable, Mapping

from stencil.ports.collaborators import Logger
from stencil.ports.template_source import FetchResult, TemplateSource

NODE_API_MANIFEST: dict[str, Any] = {
    "name": "template-x",
    "version": "1.0.0",
    "type": "node-api",
    "description": "Minimal express API",
    "dependencies": {"express": "^4.18.2"},
    "devDependencies": {"jest": "^29.7.0"},
    "scripts": {"start": "node src/index.js", "test": "jest"},
    "supportedVersions": [">=0.1.0"],
}

DEFAULT_FILES = {
    "src/index.js": "const express = require('express');\nconst app = express();\napp.listen(3000);\n",
    "README.md": "# template-x\n",
    ".gitignore": "node_modules/\n",
    "LICENSE": "MIT\n",
}


def write_template(root: Path, manifest: Mapping[str, Any] | None = None, files: Mapping[str, str] | None = None) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "package.json").write_text(json.dumps(dict(manifest or NODE_API_MANIFEST), indent=2), encoding="utf-8")
    contents = dict(DEFAULT_FILES)
    contents.update(files or {})
    for relative, content in contents.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


def build_tarball(files: Mapping[str, bytes | str], *, wrapper: str | None = "package") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name=f"{wrapper}/{name}" if wrapper else name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class RecordingLogger(Logger):
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def log(self, level: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.records.append((level, message, dict(fields or {})))

    def messages(self, level: str | None = None) -> list[str]:
        return [message for lvl, message, _ in self.records if level is None or lvl == level]


class FakeSource(TemplateSource):
    """Materialises a template through a writer callback and counts downloads."""

    def __init__(self, writer: Callable[[Path], Any] | None = None, *, gate: threading.Event | None = None) -> None:
        self._writer = writer or write_template
        self._gate = gate
        self._lock = threading.Lock()
        self.calls: list[tuple[str, str]] = []

    def fetch(self, template_id: str, version: str, destination: Path, *, deadline=None) -> FetchResult:
        with self._lock:
            self.calls.append((template_id, version))
        if self._gate is not None:
            self._gate.wait(timeout=5)
        destination.mkdir(parents=True, exist_ok=True)
        self._writer(destination)
        return FetchResult(path=destination, resolved_version=version, source="fake")
