"""Template identity, kinds and identifier classification."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from stencil.domain.errors import UnsupportedTemplateTypeError

MANIFEST_FILENAME = "package.json"
CONFIG_FILENAMES: tuple[str, ...] = ("template.config.json", "template.yaml", "template.yml")

# npm package naming: optional @scope/, lowercase url-safe characters.
REGISTRY_ID_RE = re.compile(r"^(?:@[a-z0-9~-][a-z0-9._~-]*/)?[a-z0-9~-][a-z0-9._~-]*$")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_SCP_RE = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:(?!//)\S+$")
_LOCAL_PREFIXES = ("/", "./", "../", "~/")


class TemplateKind(str, Enum):
    """Supported project kinds together with their structural requirements."""

    REACT_NEXT = "react-next"
    NODE_API = "node-api"
    VUE_APP = "vue-app"

    @property
    def requirements(self) -> "KindRequirements":
        return KIND_REQUIREMENTS[self]

    @classmethod
    def parse(cls, value: Any) -> "TemplateKind | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


@dataclass(frozen=True)
class KindRequirements:
    files: tuple[str, ...]
    directories: tuple[str, ...]
    dependencies: tuple[str, ...]
    recommended: tuple[str, ...] = ()


KIND_REQUIREMENTS: dict[TemplateKind, KindRequirements] = {
    TemplateKind.REACT_NEXT: KindRequirements(
        files=(MANIFEST_FILENAME,),
        directories=("src",),
        dependencies=("next", "react", "react-dom"),
        recommended=("next.config.js", "tsconfig.json"),
    ),
    TemplateKind.NODE_API: KindRequirements(
        files=(MANIFEST_FILENAME,),
        directories=("src",),
        dependencies=("express",),
        recommended=("src/index.js",),
    ),
    TemplateKind.VUE_APP: KindRequirements(
        files=(MANIFEST_FILENAME,),
        directories=("src",),
        dependencies=("vue",),
        recommended=("src/main.js", "src/App.vue"),
    ),
}


class IdentifierKind(str, Enum):
    REGISTRY = "registry"
    GIT = "git"


def classify_identifier(template_id: str) -> IdentifierKind:
    """Decide transport from the identifier shape.

    URL-style identifiers carry a scheme, scp-style ``user@host:path`` or a
    filesystem prefix; none of these can be valid registry package names.
    """
    value = (template_id or "").strip()
    if not value:
        raise UnsupportedTemplateTypeError("Empty template identifier", operation="classify", subject=template_id)
    if _SCHEME_RE.match(value) or _SCP_RE.match(value) or value.startswith(_LOCAL_PREFIXES):
        return IdentifierKind.GIT
    if REGISTRY_ID_RE.match(value) and len(value) <= 214:
        return IdentifierKind.REGISTRY
    raise UnsupportedTemplateTypeError(
        f"Cannot determine transport for template identifier '{template_id}'",
        operation="classify",
        subject=template_id,
    )


def _mapping(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(item) for key, item in value.items()}


def _string_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    return ()


def _url_of(value: Any) -> str | None:
    if isinstance(value, Mapping):
        value = value.get("url")
    return str(value) if value else None


@dataclass(frozen=True)
class TemplatePackage:
    id: str | None
    name: str | None
    version: str | None
    type: str | None
    description: str = ""
    config_schema: dict[str, Any] | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)
    supported_versions: tuple[str, ...] = ()
    scripts: dict[str, str] = field(default_factory=dict)
    files: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    homepage: str | None = None
    repository: str | None = None
    bugs: str | None = None
    manifest: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any], *, fallback_id: str | None = None) -> "TemplatePackage":
        data = dict(manifest)
        template_id = data.get("id") or fallback_id
        return cls(
            id=str(template_id) if template_id else None,
            name=str(data["name"]) if data.get("name") else None,
            version=str(data["version"]) if data.get("version") is not None else None,
            type=str(data["type"]) if data.get("type") is not None else None,
            description=str(data.get("description") or ""),
            config_schema=data.get("configSchema") if isinstance(data.get("configSchema"), dict) else None,
            dependencies=_mapping(data.get("dependencies")),
            dev_dependencies=_mapping(data.get("devDependencies")),
            supported_versions=_string_list(data.get("supportedVersions")),
            scripts=_mapping(data.get("scripts")),
            files=_string_list(data.get("files")),
            keywords=_string_list(data.get("keywords")),
            homepage=_url_of(data.get("homepage")),
            repository=_url_of(data.get("repository")),
            bugs=_url_of(data.get("bugs")),
            manifest=data,
        )

    @classmethod
    def from_directory(cls, root: Path, *, fallback_id: str | None = None) -> "TemplatePackage":
        return cls.from_manifest(read_manifest(root), fallback_id=fallback_id)

    def iter_dependencies(self) -> Iterator[tuple[str, str, str]]:
        for name, spec in self.dependencies.items():
            yield "dependencies", name, spec
        for name, spec in self.dev_dependencies.items():
            yield "devDependencies", name, spec

    def validate_config(self, values: Mapping[str, Any]) -> list[str]:
        """Return messages for install-time values that violate ``config_schema``."""
        if not self.config_schema:
            return []
        try:
            Draft202012Validator.check_schema(self.config_schema)
        except SchemaError as exc:
            return [f"configSchema is invalid: {exc.message}"]
        validator = Draft202012Validator(self.config_schema)
        messages: list[str] = []
        for error in sorted(validator.iter_errors(dict(values)), key=lambda item: [str(part) for part in item.absolute_path]):
            path = ".".join(str(item) for item in error.absolute_path)
            messages.append(f"{path}: {error.message}" if path else error.message)
        return messages


def read_manifest(root: Path) -> dict[str, Any]:
    """Merge ``package.json`` with template config files found at ``root``.

    Later files override earlier keys: package.json, template.config.json,
    template.yaml.
    """
    merged: dict[str, Any] = {}
    manifest_path = root / MANIFEST_FILENAME
    if manifest_path.exists():
        merged.update(_load_mapping(manifest_path))
    for filename in CONFIG_FILENAMES:
        candidate = root / filename
        if candidate.exists():
            merged.update(_load_mapping(candidate))
    return merged


def _load_mapping(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"{path.name} is not valid: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a mapping")
    return data


__all__ = [
    "TemplateKind",
    "KindRequirements",
    "KIND_REQUIREMENTS",
    "IdentifierKind",
    "TemplatePackage",
    "classify_identifier",
    "read_manifest",
    "MANIFEST_FILENAME",
    "REGISTRY_ID_RE",
]
