"""Schema helpers for template manifests."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Iterator, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from stencil.resources import load_schema

_SCHEMA_RESOURCE = "template_manifest.schema.json"

# jsonschema keyword -> issue code
_CODES = {
    "required": "MISSING_REQUIRED_FIELD",
    "enum": "INVALID_TEMPLATE_TYPE",
    "type": "INVALID_FIELD_TYPE",
}


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(load_schema(_SCHEMA_RESOURCE))


def iter_schema_errors(manifest: dict[str, Any]) -> Iterator[Tuple[str, str, str]]:
    """Yield (code, field, message) triples for schema issues in the manifest."""
    validator = _validator()
    errors = sorted(validator.iter_errors(manifest), key=lambda item: [str(part) for part in item.absolute_path])
    for error in errors:
        path = ".".join(str(item) for item in error.absolute_path)
        if error.validator == "required":
            # message reads "'id' is a required property"
            missing = error.message.split("'")[1] if "'" in error.message else path
            field = f"{path}.{missing}" if path else missing
        else:
            field = path
        code = _CODES.get(str(error.validator), "INVALID_FIELD")
        if code == "INVALID_TEMPLATE_TYPE" and field != "type":
            code = "INVALID_FIELD"
        yield code, field, error.message


def config_schema_error(schema: Any) -> str | None:
    """Return a message if ``schema`` is not itself a valid JSON Schema."""
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        return exc.message
    return None


__all__ = ["iter_schema_errors", "config_schema_error"]
