"""Semantic versions and npm-style ranges as unions of version intervals.

Versions are compared with ``packaging.version.Version``. A semver
pre-release tag maps to the matching PEP 440 pre-release (``alpha``/``beta``/
``rc``) or, for any other tag, to a ``.dev`` release; either way it sorts
before the release it precedes.

A range string (``^1.2.0 || >=3 <4``) becomes a tuple of closed/open
intervals, one per ``||`` alternative. Two ranges intersect when any pair of
their intervals has a non-empty overlap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from packaging.version import InvalidVersion, Version

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
_PARTIAL_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*|[xX*])"
    r"(?:\.(?P<minor>0|[1-9]\d*|[xX*])"
    r"(?:\.(?P<patch>0|[1-9]\d*|[xX*])"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?)?)?$"
)
_COMPARATOR_RE = re.compile(r"^(?P<op><=|>=|<|>|=|~>|~|\^)?(?P<version>.*)$")
_OPERATOR_SPACE_RE = re.compile(r"(<=|>=|<|>|=|~>|~|\^)\s+")
_HYPHEN_RE = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")
_PRE_RE = re.compile(r"^(?P<label>alpha|a|beta|b|rc|pre|preview)[.-]?(?P<number>\d*)$", re.I)
_PRE_LABELS = {"alpha": "a", "a": "a", "beta": "b", "b": "b", "rc": "rc", "pre": "rc", "preview": "rc"}
_WILDCARDS = {"x", "X", "*"}


class InvalidRangeError(ValueError):
    pass


def is_valid_semver(text: str | None) -> bool:
    return bool(text) and bool(SEMVER_RE.match(str(text)))


def _pep440(major: int, minor: int, patch: int, pre: str | None) -> Version:
    base = f"{major}.{minor}.{patch}"
    if not pre:
        return Version(base)
    match = _PRE_RE.match(pre)
    if match:
        return Version(f"{base}{_PRE_LABELS[match.group('label').lower()]}{match.group('number') or 0}")
    numeric = re.search(r"\d+", pre)
    return Version(f"{base}.dev{numeric.group(0) if numeric else 0}")


def parse_version(text: str) -> Version:
    """Parse a full semantic version (optionally ``v``-prefixed) for comparison."""
    candidate = text.strip()
    if candidate[:1] in {"v", "="}:
        candidate = candidate[1:]
    match = SEMVER_RE.match(candidate)
    if not match:
        raise InvalidVersion(f"Invalid semantic version: {text!r}")
    return _pep440(int(match.group(1)), int(match.group(2)), int(match.group(3)), match.group(4))


@dataclass(frozen=True)
class Interval:
    lower: Version | None = None
    lower_inclusive: bool = True
    upper: Version | None = None
    upper_inclusive: bool = False

    @property
    def is_empty(self) -> bool:
        if self.lower is None or self.upper is None:
            return False
        if self.lower > self.upper:
            return True
        if self.lower == self.upper:
            return not (self.lower_inclusive and self.upper_inclusive)
        return False

    def contains(self, version: Version) -> bool:
        if self.lower is not None:
            if version < self.lower or (version == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if version > self.upper or (version == self.upper and not self.upper_inclusive):
                return False
        return True

    def intersect(self, other: "Interval") -> "Interval":
        lower, lower_inclusive = self.lower, self.lower_inclusive
        if other.lower is not None and (lower is None or other.lower > lower):
            lower, lower_inclusive = other.lower, other.lower_inclusive
        elif other.lower is not None and other.lower == lower:
            lower_inclusive = lower_inclusive and other.lower_inclusive
        upper, upper_inclusive = self.upper, self.upper_inclusive
        if other.upper is not None and (upper is None or other.upper < upper):
            upper, upper_inclusive = other.upper, other.upper_inclusive
        elif other.upper is not None and other.upper == upper:
            upper_inclusive = upper_inclusive and other.upper_inclusive
        return Interval(lower, lower_inclusive, upper, upper_inclusive)

    def __str__(self) -> str:
        parts = []
        if self.lower is not None:
            parts.append(f"{'>=' if self.lower_inclusive else '>'}{self.lower}")
        if self.upper is not None:
            parts.append(f"{'<=' if self.upper_inclusive else '<'}{self.upper}")
        return " ".join(parts) or "*"


_ANY = Interval()


@dataclass(frozen=True)
class _Partial:
    major: int | None
    minor: int | None
    patch: int | None
    pre: str | None

    def floor(self) -> Version:
        return _pep440(self.major or 0, self.minor or 0, self.patch or 0, self.pre if self.patch is not None else None)

    def next_ceiling(self) -> Version | None:
        """First version above everything this partial matches (exclusive bound)."""
        if self.major is None:
            return None
        if self.minor is None:
            return Version(f"{self.major + 1}.0.0")
        if self.patch is None:
            return Version(f"{self.major}.{self.minor + 1}.0")
        return None


def _parse_partial(text: str, *, source: str) -> _Partial:
    match = _PARTIAL_RE.match(text)
    if not match:
        raise InvalidRangeError(f"Invalid version in range {source!r}: {text!r}")
    values: list[int | None] = []
    wildcard_seen = False
    for key in ("major", "minor", "patch"):
        raw = match.group(key)
        if raw is None or raw in _WILDCARDS or wildcard_seen:
            wildcard_seen = wildcard_seen or raw is not None
            values.append(None)
        else:
            values.append(int(raw))
    # 1.x.3 behaves as 1.x
    major, minor, patch = values
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    return _Partial(major, minor, patch, match.group("pre"))


def _comparator(token: str, *, source: str) -> Interval:
    match = _COMPARATOR_RE.match(token)
    op = match.group("op") or ""
    partial = _parse_partial(match.group("version"), source=source)
    if partial.major is None:
        if op in {"<", ">"}:
            # <* and >* admit nothing
            return Interval(Version("0.0.0"), False, Version("0.0.0"), False)
        return _ANY
    floor = partial.floor()
    ceiling = partial.next_ceiling()
    exact = partial.patch is not None

    if op in {"", "="}:
        if exact:
            return Interval(floor, True, floor, True)
        return Interval(floor, True, ceiling, False)
    if op == ">=":
        return Interval(floor, True, None, False)
    if op == ">":
        return Interval(floor, False, None, False) if exact else Interval(ceiling, True, None, False)
    if op == "<":
        return Interval(None, True, floor, False)
    if op == "<=":
        return Interval(None, True, floor, True) if exact else Interval(None, True, ceiling, False)
    if op in {"~", "~>"}:
        if partial.minor is None:
            return Interval(floor, True, Version(f"{partial.major + 1}.0.0"), False)
        return Interval(floor, True, Version(f"{partial.major}.{partial.minor + 1}.0"), False)
    # caret: do not modify the left-most non-zero component
    major, minor, patch = partial.major, partial.minor, partial.patch
    if major > 0 or minor is None:
        upper = Version(f"{major + 1}.0.0")
    elif minor > 0 or patch is None:
        upper = Version(f"0.{minor + 1}.0")
    else:
        upper = Version(f"0.0.{patch + 1}")
    return Interval(floor, True, upper, False)


def _conjunction(text: str, *, source: str) -> Interval:
    text = _OPERATOR_SPACE_RE.sub(r"\1", text.strip())
    if not text:
        return _ANY
    hyphen = _HYPHEN_RE.match(text)
    if hyphen:
        low = _parse_partial(hyphen.group("low"), source=source)
        high = _parse_partial(hyphen.group("high"), source=source)
        lower = low.floor() if low.major is not None else None
        if high.major is None:
            return Interval(lower, True, None, False)
        if high.patch is not None:
            return Interval(lower, True, high.floor(), True)
        return Interval(lower, True, high.next_ceiling(), False)
    interval = _ANY
    for token in text.split():
        interval = interval.intersect(_comparator(token, source=source))
    return interval


@dataclass(frozen=True)
class VersionRange:
    source: str
    intervals: tuple[Interval, ...]

    @classmethod
    def parse(cls, text: str) -> "VersionRange":
        if text is None:
            raise InvalidRangeError("Range must be a string")
        raw = str(text).strip()
        if raw in {"", "*", "latest", "x", "X"}:
            return cls(raw, (_ANY,))
        alternatives = [part for part in raw.split("||")]
        intervals = tuple(_conjunction(part, source=raw) for part in alternatives)
        return cls(raw, intervals)

    @property
    def is_empty(self) -> bool:
        return all(interval.is_empty for interval in self.intervals)

    def contains(self, version: str | Version) -> bool:
        candidate = version if isinstance(version, Version) else parse_version(version)
        return any(interval.contains(candidate) for interval in self.intervals if not interval.is_empty)

    def intersects(self, other: "VersionRange") -> bool:
        for left in self.intervals:
            for right in other.intervals:
                if not left.intersect(right).is_empty:
                    return True
        return False

    def __str__(self) -> str:
        return " || ".join(str(interval) for interval in self.intervals)


def is_valid_range(text: str) -> bool:
    try:
        return not VersionRange.parse(text).is_empty
    except InvalidRangeError:
        return False


def diff_kind(previous: str, current: str) -> str:
    """Classify the change from ``previous`` to ``current``: major, minor, patch, prerelease, none or downgrade."""
    old = parse_version(previous)
    new = parse_version(current)
    if new < old:
        return "downgrade"
    if new == old:
        return "none"
    if new.major != old.major:
        return "major"
    if new.minor != old.minor:
        return "minor"
    if new.micro != old.micro:
        return "patch"
    return "prerelease"


__all__ = [
    "Interval",
    "InvalidRangeError",
    "SEMVER_RE",
    "VersionRange",
    "diff_kind",
    "is_valid_range",
    "is_valid_semver",
    "parse_version",
]
