"""Connection descriptors for registries and git repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"
AUTH_TYPES = {"none", "bearer"}


@dataclass(frozen=True)
class RegistryConfig:
    id: str
    url: str
    auth_type: str = "none"
    credentials_ref: str | None = None
    priority: int = 0
    enabled: bool = True
    scope: str | None = None

    def __post_init__(self) -> None:
        if self.auth_type not in AUTH_TYPES:
            raise ValueError(f"Registry '{self.id}' has unsupported auth type '{self.auth_type}'")
        if self.scope is not None and not self.scope.startswith("@"):
            raise ValueError(f"Registry '{self.id}' scope must start with '@'")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RegistryConfig":
        return cls(
            id=str(data["id"]),
            url=str(data["url"]).rstrip("/"),
            auth_type=str(data.get("auth_type", data.get("authType", "none"))),
            credentials_ref=data.get("credentials_ref", data.get("credentialsRef")),
            priority=int(data.get("priority", 0)),
            enabled=bool(data.get("enabled", True)),
            scope=data.get("scope"),
        )

    @property
    def requires_auth(self) -> bool:
        return self.auth_type != "none"

    @property
    def credential_key(self) -> str:
        return self.credentials_ref or self.id

    def serves(self, template_id: str) -> bool:
        if self.scope is None:
            return True
        return template_id.startswith(f"{self.scope}/")


PUBLIC_REGISTRY = RegistryConfig(id="npmjs", url=DEFAULT_REGISTRY_URL, priority=-1)


def select_registry(template_id: str, registries: Iterable[RegistryConfig]) -> RegistryConfig:
    """Pick the registry for ``template_id``.

    Enabled registries scoped to the id's ``@scope`` win over unscoped ones;
    within a group the highest ``priority`` wins. Falls back to the public
    registry.
    """
    enabled = [item for item in registries if item.enabled and item.serves(template_id)]
    scoped = [item for item in enabled if item.scope is not None]
    pool = scoped or enabled
    if not pool:
        return PUBLIC_REGISTRY
    return sorted(pool, key=lambda item: (-item.priority, item.id))[0]


@dataclass(frozen=True)
class GitRepositoryRef:
    url: str
    ref: str | None = None

    @classmethod
    def from_version(cls, url: str, version: str | None) -> "GitRepositoryRef":
        if version in (None, "", "latest", "HEAD"):
            return cls(url=url, ref=None)
        return cls(url=url, ref=version)


__all__ = ["RegistryConfig", "GitRepositoryRef", "PUBLIC_REGISTRY", "DEFAULT_REGISTRY_URL", "select_registry"]
