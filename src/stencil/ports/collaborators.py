"""Ports for collaborators owned outside the acquisition core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping


class Logger(ABC):
    @abstractmethod
    def log(self, level: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        """Emit one structured log record."""

    def debug(self, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.log("debug", message, fields)

    def info(self, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.log("info", message, fields)

    def warn(self, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.log("warn", message, fields)

    def error(self, message: str, fields: Mapping[str, Any] | None = None) -> None:
        self.log("error", message, fields)


class NullLogger(Logger):
    def log(self, level: str, message: str, fields: Mapping[str, Any] | None = None) -> None:
        return None


class CredentialStore(ABC):
    @abstractmethod
    def get(self, registry_id: str) -> str | None:
        """Return the token for a registry or git host, or None."""


class FileCopier(ABC):
    @abstractmethod
    def copy_tree(self, source: Path, destination: Path) -> None:
        """Copy a directory tree; ``destination`` must not exist yet."""


class VariableSubstitutor(ABC):
    @abstractmethod
    def apply(self, directory: Path, variables: Mapping[str, Any]) -> None:
        """Substitute project variables in place under ``directory``."""


__all__ = ["Logger", "NullLogger", "CredentialStore", "FileCopier", "VariableSubstitutor"]
