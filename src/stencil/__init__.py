"""Template acquisition, caching and validation toolkit."""

__version__ = "0.3.0"

__all__ = ["__version__"]
