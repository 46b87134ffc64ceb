from __future__ import annotations

import pytest

from stencil.adapters.git_errors import GitFailureKind, classify_git_failure, classify_git_output
from stencil.domain.errors import (
    AuthenticationError,
    RefNotFoundError,
    RepositoryNotFoundError,
    TransportError,
)


@pytest.mark.parametrize(
    "stderr, kind",
    [
        ("warning: Could not find remote branch feature/x to clone.\nfatal: Remote branch feature/x not found in upstream origin", GitFailureKind.REF_NOT_FOUND),
        ("fatal: couldn't find remote ref refs/heads/missing", GitFailureKind.REF_NOT_FOUND),
        ("error: pathspec 'nope' did not match any file(s) known to git", GitFailureKind.REF_NOT_FOUND),
        ("fatal: Authentication failed for 'https://github.com/acme/private.git/'", GitFailureKind.AUTHENTICATION),
        ("git@github.com: Permission denied (publickey).", GitFailureKind.AUTHENTICATION),
        ("fatal: could not read Username for 'https://github.com': terminal prompts disabled", GitFailureKind.AUTHENTICATION),
        ("remote: Repository not found.\nfatal: repository 'https://github.com/acme/missing.git/' not found", GitFailureKind.REPOSITORY_NOT_FOUND),
        ("fatal: '/srv/none' does not appear to be a git repository", GitFailureKind.REPOSITORY_NOT_FOUND),
        ("fatal: unable to access 'https://example.test/': Could not resolve host: example.test", GitFailureKind.TRANSPORT),
        ("", GitFailureKind.TRANSPORT),
    ],
)
def test_classify_git_output(stderr: str, kind: GitFailureKind) -> None:
    assert classify_git_output(stderr) is kind


@pytest.mark.parametrize(
    "stderr, error_type",
    [
        ("fatal: Authentication failed", AuthenticationError),
        ("fatal: repository 'x' not found", RepositoryNotFoundError),
        ("fatal: Remote branch dev not found in upstream origin", RefNotFoundError),
        ("fatal: early EOF", TransportError),
    ],
)
def test_classify_git_failure_returns_single_typed_error(stderr: str, error_type: type[TransportError]) -> None:
    error = classify_git_failure(operation="clone", repository="https://example.test/repo.git", stderr=stderr, returncode=128)
    assert type(error) is error_type
    assert isinstance(error, TransportError)
    assert error.operation == "clone"
    assert error.repository == "https://example.test/repo.git"


def test_summary_falls_back_to_return_code() -> None:
    error = classify_git_failure(operation="fetch", repository=None, stderr="", returncode=2)
    assert "status 2" in str(error)
