from __future__ import annotations

import pytest

from stencil.adapters.credentials import EnvCredentialStore, StaticCredentialStore
from stencil.domain.registry import PUBLIC_REGISTRY, GitRepositoryRef, RegistryConfig, select_registry


def test_select_registry_prefers_scope_then_priority() -> None:
    public = RegistryConfig(id="mirror", url="https://mirror.test", priority=5)
    backup = RegistryConfig(id="backup", url="https://backup.test", priority=1)
    scoped = RegistryConfig(id="acme", url="https://npm.acme.test", scope="@acme")
    disabled = RegistryConfig(id="old", url="https://old.test", priority=99, enabled=False)
    registries = [public, backup, scoped, disabled]

    assert select_registry("@acme/starter", registries) is scoped
    assert select_registry("@other/starter", registries) is public
    assert select_registry("template-x", [backup]) is backup
    assert select_registry("template-x", [disabled]) is PUBLIC_REGISTRY


def test_registry_config_from_dict() -> None:
    config = RegistryConfig.from_dict(
        {"id": "acme", "url": "https://npm.acme.test/", "authType": "bearer", "credentialsRef": "ACME", "scope": "@acme"}
    )
    assert config.url == "https://npm.acme.test"
    assert config.requires_auth
    assert config.credential_key == "ACME"
    assert config.serves("@acme/x") and not config.serves("x")


@pytest.mark.parametrize("data", [{"id": "x", "url": "u", "auth_type": "basic"}, {"id": "x", "url": "u", "scope": "acme"}])
def test_registry_config_rejects_bad_values(data: dict) -> None:
    with pytest.raises(ValueError):
        RegistryConfig.from_dict(data)


@pytest.mark.parametrize("version, ref", [("latest", None), ("HEAD", None), ("", None), ("v1.2.0", "v1.2.0"), ("main", "main")])
def test_git_ref_from_version(version: str, ref: str | None) -> None:
    assert GitRepositoryRef.from_version("https://github.com/acme/x.git", version).ref == ref


def test_env_credential_store() -> None:
    store = EnvCredentialStore(mapping={"acme": "ACME_NPM_TOKEN"}, environ={"ACME_NPM_TOKEN": "t1", "STENCIL_TOKEN_GITHUB_COM": "t2"})
    assert store.get("acme") == "t1"
    assert store.get("github.com") == "t2"
    assert store.get("missing") is None


def test_static_credential_store() -> None:
    store = StaticCredentialStore()
    assert store.get("acme") is None
    store.set("acme", "token")
    assert store.get("acme") == "token"
