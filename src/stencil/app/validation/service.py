"""Template validation pipeline."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any

from stencil.domain.cache.checksum import compute_tree_fingerprint
from stencil.domain.template import TemplatePackage
from stencil.domain.validation import (
    CHECK_ORDER,
    RULESET_VERSION,
    ValidationOptions,
    ValidationResult,
    result_cache_key,
)
from stencil.ports.collaborators import Logger, NullLogger

from .checks import CHECKS, CheckContext, ValidationCancelled

DEFAULT_RESULT_CACHE_SIZE = 256


class TemplateValidator:
    """Runs schema, security, structure, dependency and version checks.

    Every enabled check runs regardless of earlier failures so callers see the
    complete error set. Results for an unchanged artifact are served from a
    bounded in-memory cache.
    """

    def __init__(
        self,
        *,
        logger: Logger | None = None,
        result_cache_size: int = DEFAULT_RESULT_CACHE_SIZE,
        ruleset_version: str = RULESET_VERSION,
    ) -> None:
        self._logger = logger or NullLogger()
        self._ruleset_version = ruleset_version
        self._cache_size = result_cache_size
        self._results: OrderedDict[str, ValidationResult] = OrderedDict()
        self._lock = threading.Lock()
        self.cache_hits = 0

    def validate_template_package(
        self,
        package: TemplatePackage,
        options: ValidationOptions | None = None,
    ) -> ValidationResult:
        options = options or ValidationOptions()
        root = Path(options.path) if options.path else None

        cache_key = None
        if root is not None and root.is_dir():
            fingerprint = compute_tree_fingerprint(root)
            cache_key = result_cache_key(package.id, package.version, fingerprint, options, self._ruleset_version)
            cached = self._cached(cache_key)
            if cached is not None:
                self._logger.debug("validation.cache_hit", {"templateId": package.id, "version": package.version})
                return cached

        context = CheckContext(package=package, options=options, root=root)
        if options.timeout is None:
            result = self._run_pipeline(context)
        else:
            result = self._run_with_timeout(context, options.timeout)

        if cache_key is not None and not result.timed_out:
            self._store(cache_key, result)
        self._logger.info(
            "validation.completed",
            {
                "templateId": package.id,
                "version": package.version,
                "status": "ok" if result.is_valid else "failed",
                "errors": result.error_codes,
                "warnings": len(result.warnings),
            },
        )
        return result

    def validate_directory(self, root: Path, options: ValidationOptions | None = None, *, fallback_id: str | None = None) -> ValidationResult:
        options = (options or ValidationOptions()).merged(path=str(root))
        package = TemplatePackage.from_directory(root, fallback_id=fallback_id)
        return self.validate_template_package(package, options)

    def clear_cache(self) -> None:
        with self._lock:
            self._results.clear()

    # ----- Internals -----

    def _run_with_timeout(self, context: CheckContext, timeout: float) -> ValidationResult:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stencil-validate")
        future = executor.submit(self._run_pipeline, context)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            context.cancel.set()
            self._logger.warn("validation.timeout", {"templateId": context.package.id, "timeoutSeconds": timeout})
            return ValidationResult.timeout(timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _run_pipeline(self, context: CheckContext) -> ValidationResult:
        errors = []
        warnings = []
        checks: dict[str, Any] = {}
        started = time.perf_counter()
        for name in CHECK_ORDER:
            if not context.options.enabled(name):
                checks[name] = {"enabled": False}
                continue
            check_started = time.perf_counter()
            try:
                outcome = CHECKS[name](context)
            except ValidationCancelled:
                return ValidationResult.timeout(context.options.timeout or 0.0)
            errors.extend(outcome.errors)
            warnings.extend(outcome.warnings)
            checks[name] = {
                "enabled": True,
                "passed": not outcome.errors,
                "durationMs": round((time.perf_counter() - check_started) * 1000, 3),
                "errors": len(outcome.errors),
                "warnings": len(outcome.warnings),
            }
        metadata = {
            "checks": checks,
            "rulesetVersion": self._ruleset_version,
            "durationMs": round((time.perf_counter() - started) * 1000, 3),
            "breakingChange": any(issue.code == "BREAKING_CHANGE" for issue in warnings),
            "strictMode": context.options.strict_mode,
        }
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings), metadata=metadata)

    def _cached(self, key: str) -> ValidationResult | None:
        with self._lock:
            result = self._results.get(key)
            if result is not None:
                self._results.move_to_end(key)
                self.cache_hits += 1
            return result

    def _store(self, key: str, result: ValidationResult) -> None:
        with self._lock:
            self._results[key] = result
            self._results.move_to_end(key)
            while len(self._results) > self._cache_size:
                self._results.popitem(last=False)


__all__ = ["TemplateValidator", "DEFAULT_RESULT_CACHE_SIZE"]
