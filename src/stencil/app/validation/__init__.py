"""Template validation: checks, ranges and the pipeline service."""

from .service import TemplateValidator

__all__ = ["TemplateValidator"]
