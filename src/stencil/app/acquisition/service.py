"""Template acquisition: cache lookup, transport, validation, commit."""

from __future__ import annotations

import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from stencil.app.validation import TemplateValidator
from stencil.domain.cache import CacheEntry, CacheIndex, CachePolicy, CacheTier
from stencil.domain.cache.checksum import compute_checksum
from stencil.domain.errors import ValidationError, ValidationTimeoutError
from stencil.domain.template import IdentifierKind, TemplatePackage, classify_identifier
from stencil.domain.validation import ValidationIssue, ValidationOptions, ValidationResult
from stencil.ports.collaborators import FileCopier, Logger, NullLogger, VariableSubstitutor
from stencil.ports.template_source import TemplateSource
from stencil.utils.deadline import Deadline
from stencil.utils.paths import remove_tree

DEFAULT_VERSION = "latest"


@dataclass(frozen=True)
class AcquireOptions:
    force_download: bool = False
    policy: CachePolicy | CacheTier | str | None = None
    validation: ValidationOptions | None = None
    timeout: float | None = None


@dataclass(frozen=True)
class AcquisitionResult:
    path: Path
    from_cache: bool
    entry: CacheEntry
    validation: ValidationResult | None = None
    resolved_version: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "fromCache": self.from_cache,
            "templateId": self.entry.template_id,
            "version": self.entry.version,
            "resolvedVersion": self.resolved_version,
            "checksum": self.entry.checksum,
            "validation": self.validation.to_dict() if self.validation else None,
        }


class AcquisitionCoordinator:
    """Resolve a template identifier to a verified directory in the cache.

    Concurrent calls for the same ``(template_id, version)`` serialise on the
    index's per-key lock; the second caller re-checks the cache and gets a hit
    instead of downloading again.
    """

    def __init__(
        self,
        index: CacheIndex,
        *,
        registry: TemplateSource,
        git: TemplateSource,
        validator: TemplateValidator | None = None,
        validation_options: ValidationOptions | None = None,
        copier: FileCopier | None = None,
        substitutor: VariableSubstitutor | None = None,
        logger: Logger | None = None,
        temp_dir: Path | None = None,
        network_timeout: float | None = None,
    ) -> None:
        self._index = index
        self._sources: dict[IdentifierKind, TemplateSource] = {
            IdentifierKind.REGISTRY: registry,
            IdentifierKind.GIT: git,
        }
        self._validator = validator or TemplateValidator(logger=logger)
        self._validation_options = validation_options or ValidationOptions()
        self._copier = copier
        self._substitutor = substitutor
        self._logger = logger or NullLogger()
        self._temp_dir = temp_dir
        self._network_timeout = network_timeout

    @property
    def index(self) -> CacheIndex:
        return self._index

    def acquire(self, template_id: str, version: str = DEFAULT_VERSION, options: AcquireOptions | None = None) -> AcquisitionResult:
        options = options or AcquireOptions()
        version = version or DEFAULT_VERSION
        kind = classify_identifier(template_id)
        correlation = uuid4().hex[:12]
        fields = {"templateId": template_id, "version": version, "transport": kind.value, "correlationId": correlation}

        with self._index.lock_for(template_id, version):
            if not options.force_download:
                entry = self._index.lookup(template_id, version, options.policy)
                if entry is not None:
                    self._logger.info("acquire.cache_hit", fields)
                    return AcquisitionResult(path=entry.path, from_cache=True, entry=entry)
            return self._download(kind, template_id, version, options, fields)

    def materialize(
        self,
        result: AcquisitionResult,
        destination: Path,
        variables: Mapping[str, Any] | None = None,
    ) -> Path:
        """Copy an acquired template out of the cache and apply project variables."""
        if self._copier is None:
            raise RuntimeError("materialize requires a FileCopier")
        destination = Path(destination)
        self._copier.copy_tree(result.path, destination)
        if variables and self._substitutor is not None:
            self._substitutor.apply(destination, variables)
        self._logger.info("acquire.materialized", {"templateId": result.entry.template_id, "destination": str(destination)})
        return destination

    # ----- Internals -----

    def _load_package(self, root: Path, template_id: str) -> TemplatePackage:
        try:
            return TemplatePackage.from_directory(root, fallback_id=template_id)
        except ValueError as exc:
            result = ValidationResult(errors=(ValidationIssue("INVALID_MANIFEST", str(exc)),))
            raise ValidationError(result, operation="acquire.read_manifest", subject=template_id) from exc

    def _download(
        self,
        kind: IdentifierKind,
        template_id: str,
        version: str,
        options: AcquireOptions,
        fields: dict[str, Any],
    ) -> AcquisitionResult:
        timeout = options.timeout if options.timeout is not None else self._network_timeout
        deadline = Deadline.after(timeout)
        if self._temp_dir is not None:
            self._temp_dir.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix="stencil-", dir=str(self._temp_dir) if self._temp_dir else None))
        started = time.monotonic()
        self._logger.info("acquire.download", fields)
        try:
            fetched = self._sources[kind].fetch(template_id, version, workdir / "template", deadline=deadline)
            checksum = compute_checksum(fetched.path)
            package = self._load_package(fetched.path, template_id)
            validation_options = (options.validation or self._validation_options).merged(path=str(fetched.path))
            result = self._validator.validate_template_package(package, validation_options)
            if result.timed_out:
                raise ValidationTimeoutError(result, operation="acquire.validate", subject=template_id)
            if not result.is_valid:
                raise ValidationError(result, operation="acquire.validate", subject=template_id)
            entry = self._index.commit(
                template_id,
                version,
                fetched.path,
                checksum=checksum,
                replace=options.force_download,
                move=True,
            )
        except Exception as exc:
            self._logger.error(
                "acquire.failed",
                {**fields, "error": type(exc).__name__, "message": str(exc), "durationMs": (time.monotonic() - started) * 1000},
            )
            raise
        finally:
            remove_tree(workdir, operation="acquire.cleanup")
        self._logger.info(
            "acquire.committed",
            {**fields, "resolvedVersion": fetched.resolved_version, "checksum": entry.checksum, "durationMs": (time.monotonic() - started) * 1000},
        )
        return AcquisitionResult(
            path=entry.path,
            from_cache=False,
            entry=entry,
            validation=result,
            resolved_version=fetched.resolved_version,
            warnings=tuple(issue.message for issue in result.warnings),
        )


__all__ = ["AcquisitionCoordinator", "AcquireOptions", "AcquisitionResult", "DEFAULT_VERSION"]
