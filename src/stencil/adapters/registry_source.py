"""npm-style registry transport: packument lookup, tarball fetch and safe extraction."""

from __future__ import annotations

import base64
import hashlib
import io
import shutil
import tarfile
import time
from pathlib import Path, PurePosixPath
from typing import Any, Iterable
from urllib.parse import quote

import requests

from stencil.domain.errors import (
    AuthenticationError,
    RefNotFoundError,
    RepositoryNotFoundError,
    TransportError,
    TransportTimeoutError,
)
from stencil.domain.registry import RegistryConfig, select_registry
from stencil.domain.template import MANIFEST_FILENAME
from stencil.ports.collaborators import CredentialStore, Logger, NullLogger
from stencil.ports.template_source import FetchResult, TemplateSource
from stencil.utils.deadline import Deadline

DEFAULT_TIMEOUT = 60.0
MAX_TARBALL_BYTES = 200 * 1024 * 1024
_CHUNK = 64 * 1024
_INTEGRITY_ALGORITHMS = ("sha512", "sha384", "sha256", "sha1")


def packument_url(registry: RegistryConfig, template_id: str) -> str:
    # scoped names keep the leading "@" and encode the separator
    return f"{registry.url.rstrip('/')}/{quote(template_id, safe='@')}"


def resolve_version(packument: dict[str, Any], requested: str) -> str:
    versions = packument.get("versions") or {}
    tags = packument.get("dist-tags") or {}
    if requested in ("", "latest") or requested in tags:
        resolved = tags.get(requested or "latest")
        if resolved and resolved in versions:
            return resolved
    if requested in versions:
        return requested
    raise RefNotFoundError(
        f"Version '{requested}' not found for {packument.get('name', 'package')}",
        operation="resolve_version",
        subject=str(packument.get("name")),
    )


def verify_integrity(data: bytes, dist: dict[str, Any], *, subject: str) -> str:
    """Check ``data`` against ``dist.integrity`` (SRI) or ``dist.shasum``. Returns the algorithm used."""
    integrity = dist.get("integrity")
    if isinstance(integrity, str) and integrity:
        candidates = {}
        for token in integrity.split():
            algorithm, _, digest = token.partition("-")
            candidates[algorithm] = digest
        for algorithm in _INTEGRITY_ALGORITHMS:
            expected = candidates.get(algorithm)
            if expected is None:
                continue
            actual = base64.b64encode(hashlib.new(algorithm, data).digest()).decode("ascii")
            if actual != expected:
                raise TransportError(
                    f"Tarball {algorithm} integrity mismatch",
                    operation="verify_integrity",
                    subject=subject,
                )
            return algorithm
    shasum = dist.get("shasum")
    if isinstance(shasum, str) and shasum:
        if hashlib.sha1(data).hexdigest() != shasum.lower():
            raise TransportError("Tarball shasum mismatch", operation="verify_integrity", subject=subject)
        return "sha1"
    raise TransportError("Registry did not publish an integrity digest", operation="verify_integrity", subject=subject)


def _safe_member_path(name: str) -> PurePosixPath | None:
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or any(part == ".." for part in path.parts):
        return None
    parts = [part for part in path.parts if part not in ("", ".")]
    return PurePosixPath(*parts) if parts else None


def extract_tarball(data: bytes, destination: Path, *, subject: str) -> Path:
    """Extract a gzip tarball into ``destination`` and strip the single wrapper directory.

    Members with absolute paths, parent references, links, or device nodes are
    rejected.
    """
    destination.mkdir(parents=True, exist_ok=True)
    members: list[tuple[PurePosixPath, tarfile.TarInfo]] = []
    try:
        archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:*")
    except tarfile.TarError as exc:
        raise TransportError(f"Invalid package tarball: {exc}", operation="extract", subject=subject, cause=exc) from exc
    with archive:
        for member in archive.getmembers():
            relative = _safe_member_path(member.name)
            if relative is None:
                raise TransportError(f"Unsafe path in tarball: {member.name}", operation="extract", subject=subject)
            if member.issym() or member.islnk() or member.isdev():
                raise TransportError(f"Link or device entry in tarball: {member.name}", operation="extract", subject=subject)
            members.append((relative, member))

        roots = {relative.parts[0] for relative, _ in members}
        strip = len(roots) == 1 and all(len(relative.parts) > 1 or member.isdir() for relative, member in members)
        for relative, member in members:
            target_parts = relative.parts[1:] if strip else relative.parts
            if not target_parts:
                continue
            target = destination.joinpath(*target_parts)
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            if not member.isfile():
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            source = archive.extractfile(member)
            if source is None:
                continue
            with source, target.open("wb") as handle:
                shutil.copyfileobj(source, handle)
    return destination


class RegistrySource(TemplateSource):
    def __init__(
        self,
        registries: Iterable[RegistryConfig] = (),
        *,
        credentials: CredentialStore | None = None,
        session: requests.Session | None = None,
        logger: Logger | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._registries = tuple(registries)
        self._credentials = credentials
        self._session = session or requests.Session()
        self._logger = logger or NullLogger()
        self._timeout = timeout

    def fetch(self, template_id: str, version: str, destination: Path, *, deadline: Deadline | None = None) -> FetchResult:
        return self.download_package(template_id, version, destination, deadline=deadline)

    def download_package(
        self,
        template_id: str,
        version: str,
        destination: Path,
        *,
        deadline: Deadline | None = None,
    ) -> FetchResult:
        deadline = deadline or Deadline.never()
        registry = select_registry(template_id, self._registries)
        headers = self._headers(registry)
        started = time.monotonic()
        self._logger.info(
            "registry.download.start",
            {"templateId": template_id, "version": version, "registry": registry.id, "authenticated": "Authorization" in headers},
        )

        packument = self._get(packument_url(registry, template_id), headers, deadline, subject=template_id, missing=RepositoryNotFoundError).json()
        resolved = resolve_version(packument, version or "latest")
        dist = (packument["versions"][resolved] or {}).get("dist") or {}
        tarball_url = dist.get("tarball")
        if not tarball_url:
            raise TransportError(f"No tarball published for {template_id}@{resolved}", operation="download", subject=template_id)

        response = self._get(tarball_url, headers, deadline, subject=template_id, missing=RefNotFoundError, stream=True)
        data = self._read_body(response, deadline, subject=template_id)
        verify_integrity(data, dist, subject=f"{template_id}@{resolved}")
        root = extract_tarball(data, Path(destination), subject=template_id)
        if not (root / MANIFEST_FILENAME).is_file():
            raise TransportError(f"Package {template_id}@{resolved} has no {MANIFEST_FILENAME} at its root", operation="extract", subject=template_id)

        self._logger.info(
            "registry.download.done",
            {
                "templateId": template_id,
                "version": resolved,
                "registry": registry.id,
                "bytes": len(data),
                "durationMs": (time.monotonic() - started) * 1000,
            },
        )
        return FetchResult(path=root, resolved_version=resolved, source=f"registry:{registry.id}")

    # ----- Internals -----

    def _headers(self, registry: RegistryConfig) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if not registry.requires_auth:
            return headers
        token = self._credentials.get(registry.credential_key) if self._credentials else None
        if not token:
            raise AuthenticationError(
                f"No credentials available for registry '{registry.id}'",
                operation="authenticate",
                subject=registry.id,
            )
        headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get(
        self,
        url: str,
        headers: dict[str, str],
        deadline: Deadline,
        *,
        subject: str,
        missing: type[TransportError],
        stream: bool = False,
    ) -> requests.Response:
        deadline.check("download", subject)
        try:
            response = self._session.get(url, headers=headers, timeout=deadline.timeout(self._timeout), stream=stream)
        except requests.Timeout as exc:
            raise TransportTimeoutError(f"Request to {url} timed out", operation="download", subject=subject, cause=exc) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Request to {url} failed: {exc}", operation="download", subject=subject, cause=exc) from exc
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"Registry rejected credentials ({status})", operation="download", subject=subject)
        if status == 404:
            raise missing(f"{url} not found", operation="download", subject=subject)
        if status >= 400:
            raise TransportError(f"Registry responded with HTTP {status}", operation="download", subject=subject)
        return response

    def _read_body(self, response: requests.Response, deadline: Deadline, *, subject: str) -> bytes:
        buffer = io.BytesIO()
        for chunk in response.iter_content(chunk_size=_CHUNK):
            if not chunk:
                continue
            buffer.write(chunk)
            if buffer.tell() > MAX_TARBALL_BYTES:
                raise TransportError("Tarball exceeds size limit", operation="download", subject=subject)
            deadline.check("download", subject)
        return buffer.getvalue()


__all__ = [
    "RegistrySource",
    "extract_tarball",
    "packument_url",
    "resolve_version",
    "verify_integrity",
    "MAX_TARBALL_BYTES",
]
