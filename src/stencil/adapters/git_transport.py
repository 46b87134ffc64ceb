"""Git transport: clone, ref resolution and checkout through the git CLI."""

from __future__ import annotations

import os
import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Sequence
from urllib.parse import urlsplit

from stencil.domain.errors import RefNotFoundError, TransportError, TransportTimeoutError
from stencil.domain.registry import GitRepositoryRef
from stencil.ports.collaborators import CredentialStore, Logger, NullLogger
from stencil.ports.template_source import FetchResult, TemplateSource
from stencil.settings import GitSettings
from stencil.utils.deadline import Deadline
from stencil.utils.paths import remove_tree

from .git_errors import classify_git_failure

ALLOWED_SCHEMES = {"https", "ssh", "git", "file"}
_SCP_RE = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:(?!//)[A-Za-z0-9._~/-]+$")
_FORBIDDEN_CHARS = re.compile(r"[\s;|&$`<>\\\x00-\x1f\x7f]")
_REF_NAME_RE = re.compile(r"^(?!-)(?!.*\.\.)(?!.*//)(?!.*@\{)[A-Za-z0-9._/+-]+(?<![./])$")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{7,40}$")
_USERINFO_RE = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^@/\s]+@", re.I)

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


@dataclass
class RemoteRefs:
    branches: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, output: str) -> "RemoteRefs":
        refs = cls()
        for line in output.splitlines():
            parts = line.strip().split("\t")
            if len(parts) != 2:
                continue
            sha, name = parts
            if name.startswith("refs/heads/"):
                refs.branches[name[len("refs/heads/"):]] = sha
            elif name.startswith("refs/tags/"):
                tag = name[len("refs/tags/"):]
                if tag.endswith("^{}"):
                    # peeled annotated tag points at the commit
                    refs.tags[tag[:-3]] = sha
                else:
                    refs.tags.setdefault(tag, sha)
        return refs


@dataclass(frozen=True)
class RepositoryInfo:
    branch: str | None
    commit: str
    tag: str | None
    remote_url: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"branch": self.branch, "commit": self.commit, "tag": self.tag, "remoteUrl": self.remote_url}


def redact_url(text: str) -> str:
    return _USERINFO_RE.sub(lambda match: f"{match.group('scheme')}***@", text)


def validate_repository_url(url: str) -> str:
    """Return a normalised repository location or raise ``TransportError``.

    Accepts https/ssh/git/file URLs, scp-style ``user@host:path`` and existing
    local directories. Anything else is rejected before git is invoked.
    """
    candidate = (url or "").strip()
    if not candidate or candidate.startswith("-") or _FORBIDDEN_CHARS.search(candidate):
        raise TransportError(f"Repository URL rejected: {redact_url(candidate)!r}", operation="validate_url", subject=redact_url(candidate))
    if "://" in candidate:
        parts = urlsplit(candidate)
        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            raise TransportError(f"Repository URL scheme '{scheme}' is not allowed", operation="validate_url", subject=redact_url(candidate))
        if scheme != "file" and not parts.hostname:
            raise TransportError("Repository URL has no host", operation="validate_url", subject=redact_url(candidate))
        return candidate
    if _SCP_RE.match(candidate):
        return candidate
    local = Path(candidate).expanduser()
    if local.is_dir():
        return str(local.resolve())
    raise TransportError(f"Repository location is not an allowed URL or local directory: {candidate}", operation="validate_url", subject=candidate)


def validate_ref_name(name: str) -> str:
    if not name or not _REF_NAME_RE.match(name):
        raise RefNotFoundError(f"Invalid ref name: {name!r}", operation="resolve_ref", subject=name)
    return name


class GitTransport(TemplateSource):
    def __init__(
        self,
        settings: GitSettings | None = None,
        *,
        credentials: CredentialStore | None = None,
        logger: Logger | None = None,
        git_binary: str = "git",
        runner: Runner | None = None,
    ) -> None:
        self._settings = settings or GitSettings()
        self._credentials = credentials
        self._logger = logger or NullLogger()
        self._git = git_binary
        self._runner = runner or subprocess.run

    # ----- TemplateSource -----

    def fetch(self, template_id: str, version: str, destination: Path, *, deadline: Deadline | None = None) -> FetchResult:
        ref = GitRepositoryRef.from_version(template_id, version)
        path = self.clone_repository(ref.url, destination, ref=ref.ref, deadline=deadline)
        info = self.get_repository_info(path, deadline=deadline)
        remove_tree(path / ".git", operation="git.strip_metadata")
        return FetchResult(path=path, resolved_version=ref.ref or info.commit, source="git")

    # ----- Operations -----

    def clone_repository(
        self,
        url: str,
        destination: Path,
        *,
        ref: str | None = None,
        depth: int | None = None,
        deadline: Deadline | None = None,
    ) -> Path:
        location = validate_repository_url(url)
        destination = Path(destination)
        if destination.exists() and any(destination.iterdir()):
            raise TransportError(f"Clone destination {destination} is not empty", operation="clone", subject=redact_url(location))
        kind = self._classify_ref(location, ref, deadline=deadline) if ref else None
        created = not destination.exists()
        depth = depth if depth is not None else self._settings.depth
        args = ["clone", "--single-branch"]
        if kind != "tag":
            # a tag clone needs the tag itself fetched alongside its commit
            args.append("--no-tags")
        if kind in ("branch", "tag"):
            args += ["--branch", ref]
        if depth and depth > 0:
            args += ["--depth", str(depth)]
        if self._settings.filter:
            args += [f"--filter={self._settings.filter}"]
        args += ["--", location, str(destination)]

        started = time.monotonic()
        self._logger.info("git.clone.start", {"repository": redact_url(location), "ref": ref, "refKind": kind})
        try:
            self._run(args, operation="clone", repository=location, deadline=deadline)
            if kind == "commit":
                self.checkout_commit(destination, ref, deadline=deadline, remote=location)
        except Exception:
            self._cleanup(destination, created=created)
            raise
        self._logger.info(
            "git.clone.done",
            {"repository": redact_url(location), "ref": ref, "durationMs": (time.monotonic() - started) * 1000},
        )
        return destination

    def checkout(self, path: Path, ref: str, *, deadline: Deadline | None = None, remote: str | None = None) -> str:
        """Resolve ``ref`` as branch, tag or commit in an existing clone and check it out. Returns the kind."""
        refs = self.list_remote_refs(path, deadline=deadline, remote=remote)
        if ref in refs.branches:
            self.checkout_branch(path, ref, deadline=deadline, refs=refs, remote=remote)
            return "branch"
        if ref in refs.tags:
            self.checkout_tag(path, ref, deadline=deadline, refs=refs, remote=remote)
            return "tag"
        if _SHA_RE.match(ref):
            self.checkout_commit(path, ref, deadline=deadline, remote=remote)
            return "commit"
        raise RefNotFoundError(
            f"Ref '{ref}' not found among remote branches or tags",
            operation="checkout",
            subject=self._remote_of(path),
        )

    def checkout_branch(
        self,
        path: Path,
        name: str,
        *,
        deadline: Deadline | None = None,
        refs: RemoteRefs | None = None,
        remote: str | None = None,
    ) -> None:
        validate_ref_name(name)
        refs = refs or self.list_remote_refs(path, deadline=deadline, remote=remote)
        if name not in refs.branches:
            raise RefNotFoundError(f"Branch '{name}' not found", operation="checkout_branch", subject=self._remote_of(path))
        self._run(
            ["fetch", *self._depth_args(), "origin", f"+refs/heads/{name}:refs/remotes/origin/{name}"],
            cwd=path,
            operation="fetch",
            repository=remote,
            deadline=deadline,
        )
        self._run(["checkout", "-B", name, f"refs/remotes/origin/{name}"], cwd=path, operation="checkout_branch", deadline=deadline)

    def checkout_tag(
        self,
        path: Path,
        name: str,
        *,
        deadline: Deadline | None = None,
        refs: RemoteRefs | None = None,
        remote: str | None = None,
    ) -> None:
        validate_ref_name(name)
        refs = refs or self.list_remote_refs(path, deadline=deadline, remote=remote)
        if name not in refs.tags:
            raise RefNotFoundError(f"Tag '{name}' not found", operation="checkout_tag", subject=self._remote_of(path))
        self._run(
            ["fetch", *self._depth_args(), "origin", f"+refs/tags/{name}:refs/tags/{name}"],
            cwd=path,
            operation="fetch",
            repository=remote,
            deadline=deadline,
        )
        self._run(["checkout", "--detach", f"refs/tags/{name}"], cwd=path, operation="checkout_tag", deadline=deadline)

    def checkout_commit(self, path: Path, sha: str, *, deadline: Deadline | None = None, remote: str | None = None) -> None:
        if not _SHA_RE.match(sha):
            raise RefNotFoundError(f"Invalid commit id: {sha!r}", operation="checkout_commit", subject=sha)
        shallow = self._run(["rev-parse", "--is-shallow-repository"], cwd=path, operation="rev-parse", deadline=deadline)
        fetch_args = ["fetch"]
        if shallow.stdout.strip() == "true":
            fetch_args.append("--unshallow")
        fetch_args += ["origin", "+refs/heads/*:refs/remotes/origin/*"]
        self._run(fetch_args, cwd=path, operation="fetch", repository=remote, deadline=deadline)
        try:
            self._run(["cat-file", "-e", f"{sha}^{{commit}}"], cwd=path, operation="verify_commit", deadline=deadline)
        except TransportTimeoutError:
            raise
        except TransportError as exc:
            raise RefNotFoundError(
                f"Commit '{sha}' not found",
                operation="checkout_commit",
                subject=self._remote_of(path),
                cause=exc,
            ) from exc
        self._run(["checkout", "--detach", sha], cwd=path, operation="checkout_commit", deadline=deadline)

    def list_remote_refs(self, target: Path | str, *, deadline: Deadline | None = None, remote: str | None = None) -> RemoteRefs:
        """Enumerate remote heads and tags for a clone directory or a repository URL."""
        if isinstance(target, Path):
            result = self._run(
                ["ls-remote", "--heads", "--tags", "origin"],
                cwd=target,
                operation="ls-remote",
                repository=remote,
                deadline=deadline,
            )
        else:
            location = validate_repository_url(target)
            result = self._run(["ls-remote", "--heads", "--tags", "--", location], operation="ls-remote", repository=location, deadline=deadline)
        return RemoteRefs.parse(result.stdout)

    def list_branches(self, url: str, *, deadline: Deadline | None = None) -> list[str]:
        return sorted(self.list_remote_refs(url, deadline=deadline).branches)

    def list_tags(self, url: str, *, deadline: Deadline | None = None) -> list[str]:
        return sorted(self.list_remote_refs(url, deadline=deadline).tags)

    def validate_repository(self, url: str, *, deadline: Deadline | None = None) -> bool:
        try:
            self.list_remote_refs(url, deadline=deadline)
        except TransportTimeoutError:
            raise
        except TransportError as exc:
            self._logger.debug("git.validate_repository.failed", {"repository": redact_url(url), "error": type(exc).__name__})
            return False
        return True

    def get_repository_info(self, path: Path, *, deadline: Deadline | None = None) -> RepositoryInfo:
        commit = self._run(["rev-parse", "HEAD"], cwd=path, operation="rev-parse", deadline=deadline).stdout.strip()
        branch = self._run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=path, operation="rev-parse", deadline=deadline).stdout.strip()
        try:
            tag = self._run(["describe", "--tags", "--exact-match"], cwd=path, operation="describe", deadline=deadline).stdout.strip()
        except TransportTimeoutError:
            raise
        except TransportError:
            tag = None
        return RepositoryInfo(
            branch=None if branch == "HEAD" else branch,
            commit=commit,
            tag=tag or None,
            remote_url=self._remote_of(path),
        )

    # ----- Internals -----

    def _depth_args(self) -> list[str]:
        depth = self._settings.depth
        return ["--depth", str(depth)] if depth and depth > 0 else []

    def _classify_ref(self, location: str, ref: str, *, deadline: Deadline | None = None) -> str:
        refs = self.list_remote_refs(location, deadline=deadline)
        if ref in refs.branches:
            validate_ref_name(ref)
            return "branch"
        if ref in refs.tags:
            validate_ref_name(ref)
            return "tag"
        if _SHA_RE.match(ref):
            return "commit"
        raise RefNotFoundError(
            f"Ref '{ref}' not found among remote branches or tags",
            operation="resolve_ref",
            subject=redact_url(location),
        )

    def _origin_url(self, path: Path) -> str | None:
        config = Path(path) / ".git" / "config"
        if not config.exists():
            return None
        match = re.search(r'\[remote "origin"\][^\[]*?url\s*=\s*(\S+)', config.read_text(encoding="utf-8"))
        return match.group(1) if match else None

    def _remote_of(self, path: Path) -> str | None:
        origin = self._origin_url(path)
        return redact_url(origin) if origin else None

    def _token_for(self, repository: str | None) -> str | None:
        if self._credentials is None or not repository or not repository.lower().startswith("https://"):
            return None
        key = self._settings.credentials_ref or (urlsplit(repository).hostname or "")
        return self._credentials.get(key) if key else None

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_ASKPASS", "echo")
        if self._settings.ssh_key_path is not None:
            env["GIT_SSH_COMMAND"] = f"ssh -i '{self._settings.ssh_key_path}' -o IdentitiesOnly=yes -o BatchMode=yes"
        return env

    def _run(
        self,
        args: Sequence[str],
        *,
        operation: str,
        deadline: Deadline | None = None,
        cwd: Path | None = None,
        repository: str | None = None,
    ) -> "subprocess.CompletedProcess[str]":
        deadline = deadline or Deadline.never()
        remote = repository or (self._origin_url(cwd) if cwd else None)
        subject = redact_url(remote) if remote else None
        deadline.check(operation, subject)
        token = self._token_for(remote)
        command = [self._git]
        if token:
            command += ["-c", f"http.extraHeader=Authorization: Bearer {token}"]
        command += list(args)
        try:
            result = self._runner(
                command,
                cwd=str(cwd) if cwd else None,
                env=self._environment(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=deadline.timeout(self._settings.timeout),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransportTimeoutError(
                f"git {operation} timed out",
                operation=operation,
                subject=subject,
                cause=exc,
            ) from exc
        except OSError as exc:
            raise TransportError(f"Unable to run git: {exc}", operation=operation, subject=subject, cause=exc) from exc
        if result.returncode != 0:
            stderr = redact_url(result.stderr or "")
            if token:
                stderr = stderr.replace(token, "***")
            raise classify_git_failure(operation=operation, repository=subject, stderr=stderr, returncode=result.returncode)
        return result

    def _cleanup(self, destination: Path, *, created: bool) -> None:
        if not destination.exists():
            return
        if created:
            remove_tree(destination, operation="git.cleanup", include_cwd=True)
            return
        for child in destination.iterdir():
            remove_tree(child, operation="git.cleanup", include_cwd=True)


__all__ = [
    "GitTransport",
    "RemoteRefs",
    "RepositoryInfo",
    "ALLOWED_SCHEMES",
    "redact_url",
    "validate_repository_url",
    "validate_ref_name",
]
