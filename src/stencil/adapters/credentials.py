"""Credential store adapters."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from stencil.ports.collaborators import CredentialStore


@dataclass
class EnvCredentialStore(CredentialStore):
    """Resolve tokens from environment variables.

    ``mapping`` names the variable per registry id; unmapped ids fall back to
    ``STENCIL_TOKEN_<ID>`` with non-alphanumerics replaced by underscores.
    """

    mapping: dict[str, str] = field(default_factory=dict)
    environ: Mapping[str, str] | None = None

    def variable_for(self, registry_id: str) -> str:
        if registry_id in self.mapping:
            return self.mapping[registry_id]
        normalised = "".join(ch if ch.isalnum() else "_" for ch in registry_id).upper()
        return f"STENCIL_TOKEN_{normalised}"

    def get(self, registry_id: str) -> str | None:
        env = os.environ if self.environ is None else self.environ
        token = env.get(self.variable_for(registry_id))
        return token or None


class StaticCredentialStore(CredentialStore):
    def __init__(self, tokens: Mapping[str, str] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def get(self, registry_id: str) -> str | None:
        return self._tokens.get(registry_id)

    def set(self, registry_id: str, token: str) -> None:
        self._tokens[registry_id] = token


__all__ = ["EnvCredentialStore", "StaticCredentialStore"]
