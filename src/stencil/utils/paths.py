"""Guards for destructive filesystem operations."""

from __future__ import annotations

import shutil
from pathlib import Path

from stencil.domain.errors import UnsafePathError

# Deletion is refused at or below these roots.
PROTECTED_TREES: tuple[str, ...] = (
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/System",
    "/Library",
    "/private/etc",
    "C:/Windows",
    "C:/Program Files",
    "C:/Program Files (x86)",
)

# Deletion is refused for these exact directories only.
PROTECTED_EXACT: tuple[str, ...] = (
    "/",
    "/home",
    "/Users",
    "/var",
    "/tmp",
    "/private",
    "/private/var",
    "/private/tmp",
    "/opt",
    "/root",
    "C:/",
    "C:/Users",
)


def _normalise(path: Path) -> str:
    text = path.as_posix().rstrip("/")
    return text or "/"


def is_protected_path(path: Path, *, include_cwd: bool = False) -> bool:
    resolved = Path(path).expanduser().resolve()
    text = _normalise(resolved)
    exact = {_normalise(Path(item)) for item in PROTECTED_EXACT}
    exact.add(_normalise(Path.home().resolve()))
    if include_cwd:
        exact.add(_normalise(Path.cwd().resolve()))
    if text in exact:
        return True
    for tree in PROTECTED_TREES:
        root = _normalise(Path(tree))
        if text == root or text.startswith(root + "/"):
            return True
    return False


def ensure_safe_to_delete(path: Path, *, operation: str, include_cwd: bool = False) -> Path:
    """Return the resolved path or raise ``UnsafePathError``."""

    resolved = Path(path).expanduser().resolve()
    if is_protected_path(resolved, include_cwd=include_cwd):
        raise UnsafePathError(
            f"Refusing to delete protected location {resolved}",
            operation=operation,
            subject=str(resolved),
        )
    return resolved


def remove_tree(path: Path, *, operation: str, include_cwd: bool = False) -> bool:
    """Delete ``path`` recursively after the safety check. Returns False if absent."""

    resolved = ensure_safe_to_delete(path, operation=operation, include_cwd=include_cwd)
    if not resolved.exists() and not resolved.is_symlink():
        return False
    if resolved.is_dir() and not resolved.is_symlink():
        shutil.rmtree(resolved)
    else:
        resolved.unlink()
    return True


def directory_size(path: Path) -> int:
    total = 0
    for file_path in path.rglob("*"):
        if file_path.is_file() and not file_path.is_symlink():
            total += file_path.stat().st_size
    return total


__all__ = ["PROTECTED_TREES", "PROTECTED_EXACT", "is_protected_path", "ensure_safe_to_delete", "remove_tree", "directory_size"]
