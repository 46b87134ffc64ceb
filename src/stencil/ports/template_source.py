"""Port definitions for template transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from stencil.utils.deadline import Deadline


@dataclass(frozen=True)
class FetchResult:
    path: Path
    resolved_version: str
    source: str


class TemplateSource(ABC):
    @abstractmethod
    def fetch(self, template_id: str, version: str, destination: Path, *, deadline: Deadline | None = None) -> FetchResult:
        """Materialise the template into ``destination`` (an empty directory)."""


__all__ = ["FetchResult", "TemplateSource"]
