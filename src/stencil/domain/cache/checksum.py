"""Deterministic content hashing for cached template trees."""

from __future__ import annotations

import os
from hashlib import sha256
from pathlib import Path
from typing import Iterator

CHUNK_SIZE = 1024 * 1024


def iter_files(root: Path) -> Iterator[Path]:
    """Yield regular files depth-first, sorting entries by name at every level.

    Symlinks are neither followed nor hashed.
    """
    with os.scandir(root) as iterator:
        entries = sorted(iterator, key=lambda item: item.name)
    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            yield from iter_files(Path(entry.path))
        elif entry.is_file(follow_symlinks=False):
            yield Path(entry.path)


def compute_checksum(root: Path) -> str:
    """SHA-256 over the concatenated contents of every regular file under ``root``."""
    digest = sha256()
    for file_path in iter_files(root):
        with file_path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    return digest.hexdigest()


def compute_tree_fingerprint(root: Path) -> str:
    """SHA-256 over sorted relative paths of directories and files plus each file's digest.

    Unlike ``compute_checksum``, renaming or moving a file or adding an empty
    directory changes the result.
    """
    root = Path(root)
    digest = sha256()
    for path in _iter_tree(root):
        relative = path.relative_to(root).as_posix()
        if path.is_dir():
            digest.update(f"d\x00{relative}\x00".encode("utf-8"))
            continue
        content = sha256()
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                content.update(chunk)
        digest.update(f"f\x00{relative}\x00{content.hexdigest()}\x00".encode("utf-8"))
    return digest.hexdigest()


def _iter_tree(root: Path) -> Iterator[Path]:
    with os.scandir(root) as iterator:
        entries = sorted(iterator, key=lambda item: item.name)
    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            yield Path(entry.path)
            yield from _iter_tree(Path(entry.path))
        elif entry.is_file(follow_symlinks=False):
            yield Path(entry.path)


__all__ = ["compute_checksum", "compute_tree_fingerprint", "iter_files", "CHUNK_SIZE"]
