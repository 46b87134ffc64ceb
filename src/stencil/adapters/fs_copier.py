"""Filesystem copier adapter."""

from __future__ import annotations

import shutil
from pathlib import Path

from stencil.ports.collaborators import FileCopier

IGNORED_NAMES = (".git",)


class ShutilFileCopier(FileCopier):
    def __init__(self, ignore: tuple[str, ...] = IGNORED_NAMES) -> None:
        self._ignore = ignore

    def copy_tree(self, source: Path, destination: Path) -> None:
        if destination.exists():
            raise FileExistsError(f"Destination {destination} already exists")
        shutil.copytree(
            source,
            destination,
            symlinks=True,
            ignore=shutil.ignore_patterns(*self._ignore) if self._ignore else None,
        )


__all__ = ["ShutilFileCopier"]
