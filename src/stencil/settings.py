"""Runtime settings for stencil."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from stencil import __version__
from stencil.domain.cache.policy import CachePolicy, CacheTier
from stencil.domain.registry import RegistryConfig
from stencil.domain.validation import ValidationOptions

CONFIG_FILENAME = "config.yaml"
HOME_ENV = "STENCIL_HOME"
TELEMETRY_ENV = "STENCIL_TELEMETRY"
_DISABLE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class GitSettings:
    depth: int = 1
    filter: str | None = "blob:none"
    timeout: float = 120.0
    ssh_key_path: Path | None = None
    credentials_ref: str | None = None


@dataclass(frozen=True)
class RuntimeSettings:
    home_dir: Path
    cache_dir: Path
    state_dir: Path
    log_dir: Path
    temp_dir: Path | None = None
    host_version: str = __version__
    cache_tier: CacheTier = CacheTier.DEFAULT
    max_cache_entries: int | None = None
    network_timeout: float = 60.0
    validation: ValidationOptions = field(default_factory=ValidationOptions)
    git: GitSettings = field(default_factory=GitSettings)
    registries: tuple[RegistryConfig, ...] = ()
    telemetry_enabled: bool = True

    @property
    def cache_policy(self) -> CachePolicy:
        return CachePolicy(tier=self.cache_tier)

    @property
    def telemetry_file(self) -> Path:
        return self.log_dir / "telemetry.jsonl"

    def validation_options(self) -> ValidationOptions:
        return self.validation.merged(host_version=self.validation.host_version or self.host_version)

    @classmethod
    def for_home(cls, home: Path, **overrides: Any) -> "RuntimeSettings":
        home = Path(home).expanduser()
        values: dict[str, Any] = {
            "home_dir": home,
            "cache_dir": home / "cache",
            "state_dir": home / "state",
            "log_dir": home / "logs",
        }
        values.update(overrides)
        return cls(**values)


def _default_home_dir(environ: Mapping[str, str]) -> Path:
    override = environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".stencil"


def _load_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping")
    return data


def _validation_from(data: Mapping[str, Any]) -> ValidationOptions:
    known = set(ValidationOptions.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown validation settings: {', '.join(unknown)}")
    return ValidationOptions(**dict(data))


def _git_from(data: Mapping[str, Any]) -> GitSettings:
    ssh_key = data.get("ssh_key_path")
    return GitSettings(
        depth=int(data.get("depth", 1)),
        filter=data.get("filter", "blob:none"),
        timeout=float(data.get("timeout", 120.0)),
        ssh_key_path=Path(ssh_key).expanduser() if ssh_key else None,
        credentials_ref=data.get("credentials_ref"),
    )


def load_settings(config_path: Path | None = None, environ: Mapping[str, str] | None = None) -> RuntimeSettings:
    """Build settings from ``config.yaml`` under the home directory.

    This is the only place environment variables are consulted; the core
    receives the resulting ``RuntimeSettings`` explicitly.
    """
    env = os.environ if environ is None else environ
    base = _default_home_dir(env)
    config = _load_config(config_path or base / CONFIG_FILENAME)

    cache = config.get("cache") or {}
    cache_dir = Path(cache["dir"]).expanduser() if cache.get("dir") else base / "cache"
    temp_dir = config.get("temp_dir")
    telemetry = config.get("telemetry", True)
    if env.get(TELEMETRY_ENV) is not None:
        telemetry = env[TELEMETRY_ENV].lower() not in _DISABLE_VALUES

    return RuntimeSettings(
        home_dir=base,
        cache_dir=cache_dir,
        state_dir=base / "state",
        log_dir=base / "logs",
        temp_dir=Path(temp_dir).expanduser() if temp_dir else None,
        host_version=str(config.get("host_version", __version__)),
        cache_tier=CachePolicy.from_value(cache.get("tier", CacheTier.DEFAULT.value)).tier,
        max_cache_entries=cache.get("max_entries"),
        network_timeout=float(config.get("network_timeout", 60.0)),
        validation=_validation_from(config.get("validation") or {}),
        git=_git_from(config.get("git") or {}),
        registries=tuple(RegistryConfig.from_dict(item) for item in config.get("registries") or ()),
        telemetry_enabled=bool(telemetry),
    )


__all__ = ["RuntimeSettings", "GitSettings", "load_settings", "CONFIG_FILENAME", "HOME_ENV", "TELEMETRY_ENV"]
