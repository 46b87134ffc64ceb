from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from stencil.app.validation.ranges import VersionRange, diff_kind, parse_version

parts = st.integers(min_value=0, max_value=30)
versions = st.tuples(parts, parts, parts).map(lambda item: "{}.{}.{}".format(*item))
operators = st.sampled_from(["", "=", "^", "~", ">=", "<=", ">", "<"])
ranges = st.builds(lambda op, version: f"{op}{version}", operators, versions)


@given(st.sampled_from(["", "=", "^", "~", ">=", "<="]), versions)
def test_inclusive_ranges_admit_their_anchor(op: str, version: str) -> None:
    assert VersionRange.parse(f"{op}{version}").contains(version)


@given(ranges, ranges)
def test_intersection_is_symmetric(left: str, right: str) -> None:
    a = VersionRange.parse(left)
    b = VersionRange.parse(right)
    assert a.intersects(b) == b.intersects(a)


@settings(max_examples=200)
@given(ranges, ranges, versions)
def test_shared_member_implies_intersection(left: str, right: str, version: str) -> None:
    a = VersionRange.parse(left)
    b = VersionRange.parse(right)
    if a.contains(version) and b.contains(version):
        assert a.intersects(b)


@given(ranges)
def test_non_empty_range_intersects_itself(spec: str) -> None:
    version_range = VersionRange.parse(spec)
    assert version_range.intersects(version_range) == (not version_range.is_empty)


@given(versions, versions)
def test_diff_kind_agrees_with_ordering(previous: str, current: str) -> None:
    kind = diff_kind(previous, current)
    old, new = parse_version(previous), parse_version(current)
    if new < old:
        assert kind == "downgrade"
    elif new == old:
        assert kind == "none"
    else:
        assert kind in {"major", "minor", "patch"}
