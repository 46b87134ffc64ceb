"""Single classification table for git client failures."""

from __future__ import annotations

import re
from enum import Enum

from stencil.domain.errors import (
    AuthenticationError,
    RefNotFoundError,
    RepositoryNotFoundError,
    TransportError,
)


class GitFailureKind(str, Enum):
    AUTHENTICATION = "authentication"
    REPOSITORY_NOT_FOUND = "repository_not_found"
    REF_NOT_FOUND = "ref_not_found"
    TRANSPORT = "transport"


# Order matters: ref messages also contain "not found".
_PATTERNS: tuple[tuple[GitFailureKind, re.Pattern[str]], ...] = (
    (GitFailureKind.REF_NOT_FOUND, re.compile(r"remote branch .+ not found", re.I)),
    (GitFailureKind.REF_NOT_FOUND, re.compile(r"couldn't find remote ref", re.I)),
    (GitFailureKind.REF_NOT_FOUND, re.compile(r"did not match any file\(s\) known to git", re.I)),
    (GitFailureKind.REF_NOT_FOUND, re.compile(r"unknown revision|bad revision|invalid reference", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"authentication failed", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"permission denied", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"could not read (username|password)", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"terminal prompts disabled", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"invalid username or password", re.I)),
    (GitFailureKind.AUTHENTICATION, re.compile(r"returned error: 40[13]", re.I)),
    (GitFailureKind.REPOSITORY_NOT_FOUND, re.compile(r"repository .*not found", re.I)),
    (GitFailureKind.REPOSITORY_NOT_FOUND, re.compile(r"repository .* does not exist", re.I)),
    (GitFailureKind.REPOSITORY_NOT_FOUND, re.compile(r"does not appear to be a git repository", re.I)),
    (GitFailureKind.REPOSITORY_NOT_FOUND, re.compile(r"returned error: 404", re.I)),
    (GitFailureKind.REPOSITORY_NOT_FOUND, re.compile(r"no such (file or directory|repository)", re.I)),
)

_ERROR_TYPES: dict[GitFailureKind, type[TransportError]] = {
    GitFailureKind.AUTHENTICATION: AuthenticationError,
    GitFailureKind.REPOSITORY_NOT_FOUND: RepositoryNotFoundError,
    GitFailureKind.REF_NOT_FOUND: RefNotFoundError,
    GitFailureKind.TRANSPORT: TransportError,
}


def classify_git_output(stderr: str) -> GitFailureKind:
    for kind, pattern in _PATTERNS:
        if pattern.search(stderr or ""):
            return kind
    return GitFailureKind.TRANSPORT


def classify_git_failure(
    *,
    operation: str,
    repository: str | None,
    stderr: str,
    returncode: int | None = None,
    cause: BaseException | None = None,
) -> TransportError:
    """Turn a failed git invocation into exactly one typed transport error."""
    kind = classify_git_output(stderr)
    detail = (stderr or "").strip().splitlines()
    summary = detail[-1] if detail else f"git exited with status {returncode}"
    error_type = _ERROR_TYPES[kind]
    error = error_type(
        f"git {operation} failed ({kind.value}): {summary}",
        operation=operation,
        subject=repository,
        cause=cause if cause is not None else (stderr or None),
    )
    error.kind = kind  # type: ignore[attr-defined]
    return error


__all__ = ["GitFailureKind", "classify_git_output", "classify_git_failure"]
