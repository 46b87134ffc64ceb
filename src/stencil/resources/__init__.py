"""Packaged JSON schemas."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any

_PACKAGE = "stencil.resources"


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict[str, Any]:
    resource = resources.files(_PACKAGE) / name
    with resource.open("r", encoding="utf-8") as handle:
        return json.load(handle)


__all__ = ["load_schema"]
