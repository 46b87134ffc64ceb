"""Cache domain: content hashing, entries and the keyed index."""

from .checksum import compute_checksum
from .entry import CacheEntry
from .index import CacheIndex, CacheStats, PruneReport
from .policy import CachePolicy, CacheTier

__all__ = [
    "CacheEntry",
    "CacheIndex",
    "CachePolicy",
    "CacheStats",
    "CacheTier",
    "PruneReport",
    "compute_checksum",
]
