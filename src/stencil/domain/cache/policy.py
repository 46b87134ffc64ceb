"""Named TTL tiers for cache expiry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum


class CacheTier(str, Enum):
    AGGRESSIVE = "aggressive"
    DEFAULT = "default"
    CONSERVATIVE = "conservative"
    NONE = "none"


TIER_TTLS: dict[CacheTier, timedelta] = {
    CacheTier.AGGRESSIVE: timedelta(minutes=5),
    CacheTier.DEFAULT: timedelta(minutes=60),
    CacheTier.CONSERVATIVE: timedelta(hours=24),
    CacheTier.NONE: timedelta(0),
}


@dataclass(frozen=True)
class CachePolicy:
    """Expiry policy applied by ``CacheIndex.lookup``.

    ``ttl_override`` replaces the tier duration; a zero TTL expires everything.
    """

    tier: CacheTier = CacheTier.DEFAULT
    ttl_override: timedelta | None = None

    @classmethod
    def from_value(cls, value: "CachePolicy | CacheTier | str | None") -> "CachePolicy":
        if value is None:
            return cls()
        if isinstance(value, CachePolicy):
            return value
        try:
            return cls(tier=CacheTier(value))
        except ValueError as exc:
            known = ", ".join(tier.value for tier in CacheTier)
            raise ValueError(f"Unknown cache tier '{value}' (expected one of: {known})") from exc

    @property
    def ttl(self) -> timedelta:
        if self.ttl_override is not None:
            return self.ttl_override
        return TIER_TTLS[self.tier]

    @property
    def always_miss(self) -> bool:
        return self.ttl <= timedelta(0)

    def with_ttl(self, ttl: timedelta) -> "CachePolicy":
        return CachePolicy(tier=self.tier, ttl_override=ttl)


__all__ = ["CacheTier", "CachePolicy", "TIER_TTLS"]
