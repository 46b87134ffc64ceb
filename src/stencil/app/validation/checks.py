"""The five independent validation checks.

Each check receives a ``CheckContext`` and returns a ``CheckOutcome``; checks
never raise for template problems and never stop the pipeline.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path, PurePosixPath
from typing import Any, Callable
from urllib.parse import urlsplit

from stencil.domain.cache.checksum import iter_files
from stencil.domain.template import REGISTRY_ID_RE, TemplateKind, TemplatePackage
from stencil.domain.validation import ValidationIssue, ValidationOptions

from .ranges import InvalidRangeError, VersionRange, diff_kind, is_valid_semver, parse_version
from .schema import config_schema_error, iter_schema_errors

SUSPICIOUS_EXTENSIONS = {".exe", ".bat", ".sh", ".cmd", ".dll", ".so", ".dylib", ".scr", ".ps1"}
SENSITIVE_FILE_PATTERNS = (
    re.compile(r"^\.env(\..+)?$"),
    re.compile(r".*\.(pem|key|p12|pfx)$"),
)
SENSITIVE_FILE_ALLOWED = {".env.example", ".env.sample", ".env.template"}
VENDOR_DIRECTORIES = {"node_modules", "bower_components"}
SKIPPED_DIRECTORIES = {".git"}
TEXT_EXTENSIONS = {
    ".js", ".mjs", ".cjs", ".ts", ".jsx", ".tsx", ".vue", ".json", ".md", ".html",
    ".css", ".scss", ".sass", ".less", ".yaml", ".yml", ".txt", ".toml", ".ini", "",
}
MAX_SCANNED_BYTES = 1024 * 1024
LARGE_FILE_BYTES = 10 * 1024 * 1024
SECRET_PATTERNS = (
    re.compile(r"api[_-]?key\s*[:=]\s*['\"`][A-Za-z0-9_\-]{20,}['\"`]", re.I),
    re.compile(r"password\s*[:=]\s*['\"`][^'\"`\s]{8,}['\"`]", re.I),
    re.compile(r"secret\s*[:=]\s*['\"`][A-Za-z0-9_\-]{16,}['\"`]", re.I),
    re.compile(r"token\s*[:=]\s*['\"`][A-Za-z0-9_\-.]{20,}['\"`]", re.I),
    re.compile(r"private[_-]?key\s*[:=]\s*['\"`][A-Za-z0-9_\-]{20,}['\"`]", re.I),
    re.compile(r"-----BEGIN (RSA |EC |OPENSSH )?PRIVATE KEY-----"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b"),
)
LIFECYCLE_SCRIPTS = ("preinstall", "install", "postinstall", "prepare", "prepublish")
DANGEROUS_COMMANDS = (
    re.compile(r"\brm\s+-[a-z]*r[a-z]*f?\s+(/|~|\*|\$HOME)", re.I),
    re.compile(r"\bsudo\b"),
    re.compile(r"\b(curl|wget)\b[^|]*\|\s*(ba|z)?sh\b"),
    re.compile(r"\bchmod\s+-R\s+777\b"),
    re.compile(r"\bmkfs\b|\bdd\s+if="),
    re.compile(r":\(\)\s*\{\s*:\|:&\s*\};:"),
    re.compile(r"\bdel\s+/s\b", re.I),
)
DEPRECATED_PACKAGES = {
    "request": "use a maintained HTTP client",
    "node-sass": "use sass",
    "tslint": "use eslint",
    "babel-eslint": "use @babel/eslint-parser",
    "left-pad": "use String.prototype.padStart",
}
# package -> versions affected by published advisories
VULNERABLE_PACKAGES = {
    "lodash": "<4.17.21",
    "moment": "<2.29.4",
    "minimist": "<1.2.6",
    "axios": "<0.21.2",
    "node-fetch": "<2.6.7",
    "event-stream": "=3.3.6",
}
# packages that must resolve to a shared major version
CO_REQUIRED = (
    ("react", "react-dom"),
    ("vue", "@vue/compiler-sfc"),
)
NON_REGISTRY_PREFIXES = ("file:", "link:", "git+", "git:", "github:", "http:", "https:", "workspace:", "npm:")
DIST_TAG_RE = re.compile(r"^[a-z][a-z0-9-]*$")
DEPRECATED_TEMPLATE_VERSIONS = {"0.0.1", "0.0.2", "1.0.0-alpha"}
URL_FIELDS = ("homepage", "repository", "bugs")
_URL_SCHEMES = {"http", "https", "git", "git+https", "git+ssh", "ssh"}


@dataclass
class CheckOutcome:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def error(self, code: str, message: str, field: str | None = None) -> None:
        self.errors.append(ValidationIssue(code, message, field))

    def warn(self, code: str, message: str, field: str | None = None) -> None:
        self.warnings.append(ValidationIssue(code, message, field))

    def issue(self, strict: bool, code: str, message: str, field: str | None = None) -> None:
        if strict:
            self.error(code, message, field)
        else:
            self.warn(code, message, field)


class ValidationCancelled(Exception):
    pass


@dataclass
class CheckContext:
    package: TemplatePackage
    options: ValidationOptions
    root: Path | None = None
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def strict(self) -> bool:
        return self.options.strict_mode

    @property
    def template_type(self) -> str | None:
        return self.package.type or self.options.template_type

    def checkpoint(self) -> None:
        if self.cancel.is_set():
            raise ValidationCancelled()

    @cached_property
    def files(self) -> list[PurePosixPath]:
        """Relative paths of regular files, skipping VCS metadata."""
        if self.root is None or not self.root.is_dir():
            return []
        found: list[PurePosixPath] = []
        for path in iter_files(self.root):
            relative = PurePosixPath(path.relative_to(self.root).as_posix())
            if relative.parts and relative.parts[0] in SKIPPED_DIRECTORIES:
                continue
            found.append(relative)
        return found

    def effective_manifest(self) -> dict[str, Any]:
        manifest = dict(self.package.manifest)
        for key, value in (("id", self.package.id), ("type", self.template_type)):
            if value and not manifest.get(key):
                manifest[key] = value
        return manifest


# ----- Schema -----


def check_schema(ctx: CheckContext) -> CheckOutcome:
    outcome = CheckOutcome()
    manifest = ctx.effective_manifest()
    for code, field_name, message in iter_schema_errors(manifest):
        outcome.error(code, message, field_name or None)

    for declared in ctx.package.files:
        if _is_traversal(declared):
            outcome.error("PATH_TRAVERSAL", f"Declared file path escapes the template root: {declared}", "files")

    for name in URL_FIELDS:
        value = getattr(ctx.package, name)
        if value and not _is_well_formed_url(value):
            outcome.error("INVALID_URL", f"{name} is not a well-formed URL: {value}", name)

    if "configSchema" in manifest:
        schema = manifest["configSchema"]
        problem = config_schema_error(schema) if isinstance(schema, dict) else "configSchema must be an object"
        if problem:
            outcome.error("INVALID_CONFIG_SCHEMA", problem, "configSchema")
    return outcome


def _is_traversal(value: str) -> bool:
    normalised = value.replace("\\", "/")
    if normalised.startswith("/") or re.match(r"^[A-Za-z]:/", normalised):
        return True
    return ".." in PurePosixPath(normalised).parts


def _is_well_formed_url(value: str) -> bool:
    if re.match(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:[^\s]+$", value):
        return True
    parts = urlsplit(value)
    return parts.scheme in _URL_SCHEMES and bool(parts.netloc) and not re.search(r"\s", value)


# ----- Security -----


def check_security(ctx: CheckContext) -> CheckOutcome:
    outcome = CheckOutcome()
    vendored: set[str] = set()
    for relative in ctx.files:
        ctx.checkpoint()
        vendor = next((part for part in relative.parts[:-1] if part in VENDOR_DIRECTORIES), None)
        if vendor is not None:
            vendored.add(vendor)
            continue
        name = relative.name
        suffix = PurePosixPath(name).suffix.lower()
        if suffix in SUSPICIOUS_EXTENSIONS:
            outcome.error("SUSPICIOUS_FILE_EXTENSION", f"Executable or script file not allowed: {relative}", str(relative))
        if name not in SENSITIVE_FILE_ALLOWED and any(pattern.match(name) for pattern in SENSITIVE_FILE_PATTERNS):
            outcome.error("SENSITIVE_FILE", f"Sensitive file must not be shipped: {relative}", str(relative))
        if ctx.root is not None:
            _scan_file(ctx, outcome, ctx.root, relative)
    for vendor in sorted(vendored):
        outcome.error("VENDORED_DEPENDENCIES", f"Template ships a {vendor} tree", vendor)

    for script_name, command in sorted(ctx.package.scripts.items()):
        dangerous = any(pattern.search(command) for pattern in DANGEROUS_COMMANDS)
        if dangerous:
            outcome.error("DANGEROUS_SCRIPT", f"Script '{script_name}' runs a destructive command", f"scripts.{script_name}")
        elif script_name in LIFECYCLE_SCRIPTS:
            outcome.warn("LIFECYCLE_SCRIPT", f"Install lifecycle script '{script_name}' runs on install", f"scripts.{script_name}")

    for section, name, _spec in ctx.package.iter_dependencies():
        if name in DEPRECATED_PACKAGES:
            outcome.warn(
                "DEPRECATED_DEPENDENCY",
                f"{name} is deprecated: {DEPRECATED_PACKAGES[name]}",
                f"{section}.{name}",
            )
    return outcome


def _scan_file(ctx: CheckContext, outcome: CheckOutcome, root: Path, relative: PurePosixPath) -> None:
    path = root.joinpath(*relative.parts)
    size = path.stat().st_size
    if size > LARGE_FILE_BYTES:
        outcome.warn("LARGE_FILE", f"{relative} is {size} bytes", str(relative))
    if relative.suffix.lower() not in TEXT_EXTENSIONS or size > MAX_SCANNED_BYTES:
        return
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return
    for line_number, line in enumerate(text.splitlines(), start=1):
        for pattern in SECRET_PATTERNS:
            if pattern.search(line):
                outcome.issue(
                    ctx.strict,
                    "HARDCODED_SECRET",
                    f"Potential hard-coded secret in {relative}:{line_number}",
                    str(relative),
                )
                break


# ----- Structure -----


def check_structure(ctx: CheckContext) -> CheckOutcome:
    outcome = CheckOutcome()
    kind = TemplateKind.parse(ctx.template_type)
    present = {str(item) for item in ctx.files}
    directories = {str(parent) for item in ctx.files for parent in item.parents if str(parent) != "."}

    if kind is None:
        outcome.warn("UNKNOWN_TEMPLATE_TYPE", f"No structure rules for template type {ctx.template_type!r}", "type")
    else:
        requirements = kind.requirements
        for required in requirements.files:
            if required not in present:
                outcome.error("MISSING_REQUIRED_FILE", f"{kind.value} templates require {required}", required)
        for required in requirements.directories:
            if required not in directories:
                outcome.error("MISSING_REQUIRED_FILE", f"{kind.value} templates require a {required}/ directory", required)
        declared = set(ctx.package.dependencies) | set(ctx.package.dev_dependencies)
        for dependency in requirements.dependencies:
            if dependency not in declared:
                outcome.error(
                    "MISSING_REQUIRED_DEPENDENCY",
                    f"{kind.value} templates must depend on {dependency}",
                    f"dependencies.{dependency}",
                )
        for recommended in requirements.recommended:
            if recommended not in present:
                outcome.warn("MISSING_RECOMMENDED_FILE", f"{kind.value} templates usually include {recommended}", recommended)

    lowered = {name.lower() for name in present}
    if not any(name.startswith("readme") for name in lowered):
        outcome.warn("MISSING_README", "Template has no README", "README.md")
    if ".gitignore" not in lowered:
        outcome.warn("MISSING_GITIGNORE", "Template has no .gitignore", ".gitignore")
    if not any(name.startswith(("license", "licence")) for name in lowered):
        outcome.warn("MISSING_LICENSE", "Template has no LICENSE file", "LICENSE")
    return outcome


# ----- Dependency -----


def check_dependencies(ctx: CheckContext) -> CheckOutcome:
    outcome = CheckOutcome()
    parsed: dict[tuple[str, str], VersionRange] = {}

    for section, name, spec in ctx.package.iter_dependencies():
        ctx.checkpoint()
        field_name = f"{section}.{name}"
        if not REGISTRY_ID_RE.match(name):
            outcome.error("INVALID_DEPENDENCY_NAME", f"Invalid package name: {name}", field_name)
        value = spec.strip()
        if value.startswith(NON_REGISTRY_PREFIXES):
            outcome.warn("NON_REGISTRY_DEPENDENCY", f"{name} is not resolved from a registry: {value}", field_name)
            continue
        if DIST_TAG_RE.match(value) and value != "x":
            outcome.warn("UNPINNED_DEPENDENCY", f"{name} follows the '{value}' dist-tag", field_name)
            continue
        try:
            version_range = VersionRange.parse(value)
        except InvalidRangeError:
            outcome.error("INVALID_VERSION_RANGE", f"{name} has an invalid version range: {value}", field_name)
            continue
        if version_range.is_empty:
            outcome.error("INVALID_VERSION_RANGE", f"{name} range admits no version: {value}", field_name)
            continue
        parsed[(section, name)] = version_range

        vulnerable = VULNERABLE_PACKAGES.get(name)
        if vulnerable and version_range.intersects(VersionRange.parse(vulnerable)):
            outcome.error(
                "KNOWN_VULNERABLE_DEPENDENCY",
                f"{name}@{value} admits versions with known advisories ({vulnerable})",
                field_name,
            )

    for name in sorted({name for (section, name) in parsed if section == "dependencies"}):
        runtime = parsed[("dependencies", name)]
        dev = parsed.get(("devDependencies", name))
        if dev is not None and not runtime.intersects(dev):
            outcome.issue(
                ctx.strict,
                "DEPENDENCY_CONFLICT",
                f"{name} is declared with disjoint ranges: {runtime.source} vs {dev.source}",
                f"devDependencies.{name}",
            )

    for first, second in CO_REQUIRED:
        left = _declared_range(parsed, first)
        right = _declared_range(parsed, second)
        if left is None or right is None:
            continue
        if not _majors(left) & _majors(right):
            outcome.issue(
                ctx.strict,
                "DEPENDENCY_CONFLICT",
                f"{first}@{left.source} and {second}@{right.source} share no major version",
                f"dependencies.{second}",
            )
    return outcome


def _declared_range(parsed: dict[tuple[str, str], VersionRange], name: str) -> VersionRange | None:
    return parsed.get(("dependencies", name)) or parsed.get(("devDependencies", name))


def _majors(version_range: VersionRange, limit: int = 1000) -> set[int]:
    """Major versions the range admits at least one release of; open ranges stop at ``limit``."""
    majors: set[int] = set()
    for interval in version_range.intervals:
        if interval.is_empty:
            continue
        low = interval.lower.major if interval.lower is not None else 0
        if interval.upper is None:
            high = max(low, limit)
        else:
            high = interval.upper.major
            if interval.upper == parse_version(f"{high}.0.0") and not interval.upper_inclusive:
                high -= 1
        majors.update(range(low, high + 1))
    return majors


# ----- Version -----


def check_version(ctx: CheckContext) -> CheckOutcome:
    outcome = CheckOutcome()
    version = ctx.package.version
    if not is_valid_semver(version):
        outcome.error("INVALID_VERSION", f"Version is not a valid semantic version: {version!r}", "version")
        version = None
    elif version in DEPRECATED_TEMPLATE_VERSIONS:
        outcome.warn("DEPRECATED_VERSION", f"Template version {version} is deprecated", "version")

    ranges: list[VersionRange] = []
    for index, raw in enumerate(ctx.package.supported_versions):
        try:
            parsed = VersionRange.parse(raw)
        except InvalidRangeError:
            outcome.error("INVALID_VERSION_RANGE", f"Unsupported version range: {raw}", f"supportedVersions.{index}")
            continue
        ranges.append(parsed)

    host = ctx.options.host_version
    if ranges and host and is_valid_semver(host):
        if not any(item.contains(host) for item in ranges):
            outcome.error(
                "INCOMPATIBLE_HOST_VERSION",
                f"Host version {host} is outside supported ranges: {', '.join(item.source for item in ranges)}",
                "supportedVersions",
            )

    previous = ctx.options.previous_version
    if version and previous and is_valid_semver(previous):
        kind = diff_kind(previous, version)
        if kind == "major":
            outcome.warn("BREAKING_CHANGE", f"Major version change from {previous} to {version}", "version")
        elif kind == "downgrade":
            outcome.warn("VERSION_DOWNGRADE", f"Version {version} is lower than {previous}", "version")
    return outcome


CHECKS: dict[str, Callable[[CheckContext], CheckOutcome]] = {
    "schema": check_schema,
    "security": check_security,
    "structure": check_structure,
    "dependency": check_dependencies,
    "version": check_version,
}


__all__ = [
    "CHECKS",
    "CheckContext",
    "CheckOutcome",
    "ValidationCancelled",
    "check_schema",
    "check_security",
    "check_structure",
    "check_dependencies",
    "check_version",
]
