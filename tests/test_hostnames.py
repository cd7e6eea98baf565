from __future__ import annotations

import pytest

from injectables.hostnames import (
    has_wildcard,
    intersect,
    is_descendant_of,
    normalize_hostname,
    parent_hostnames,
    subtract,
    union,
)


def test_parent_hostnames_walks_every_suffix() -> None:
    assert parent_hostnames("a.b.example.com") == ("b.example.com", "example.com", "com")
    assert parent_hostnames("localhost") == ()


def test_descendant_matches_ancestor_but_not_the_reverse() -> None:
    assert is_descendant_of("x.y.example.com", {"example.com"})
    assert not is_descendant_of("example.com", {"x.example.com"})


def test_descendant_literal_member() -> None:
    assert is_descendant_of("example.com", ["example.com"])


def test_descendant_requires_label_boundary() -> None:
    assert not is_descendant_of("badexample.com", {"example.com"})


@pytest.mark.parametrize("sentinel", ["*", "all-urls"])
def test_wildcard_sentinels_match_everything(sentinel: str) -> None:
    assert is_descendant_of("anything.test", {sentinel})
    assert has_wildcard([sentinel])
    assert has_wildcard({sentinel, "a.com"})


@pytest.mark.parametrize("sentinel", ["*", "all-urls"])
def test_intersect_with_wildcard_keeps_left_side(sentinel: str) -> None:
    left = ["b.com", "a.com", "x.y.z"]
    assert intersect(left, {sentinel, "other.org"}) == left


@pytest.mark.parametrize("sentinel", ["*", "all-urls"])
def test_subtract_wildcard_is_empty(sentinel: str) -> None:
    assert subtract(["a.com", "b.com"], [sentinel]) == []


def test_intersect_keeps_members_and_descendants_in_order() -> None:
    result = intersect(["www.a.com", "b.com", "a.com", "c.org"], ["a.com", "c.org"])
    assert result == ["www.a.com", "a.com", "c.org"]


def test_intersect_does_not_keep_ancestors() -> None:
    assert intersect(["a.com"], ["www.a.com"]) == []


def test_subtract_drops_members_and_descendants() -> None:
    result = subtract(["www.a.com", "b.com", "a.com", "a.com.evil.net"], ["a.com"])
    assert result == ["b.com", "a.com.evil.net"]


def test_union_drops_repeats_first_wins() -> None:
    assert union(["a", "b"], ["b", "c"], ["a"]) == ["a", "b", "c"]


def test_normalize_hostname_extracts_host_from_url() -> None:
    assert normalize_hostname("https://WWW.Example.com:8443/path?q=1") == "www.example.com"


def test_normalize_hostname_plain_and_trailing_dot() -> None:
    assert normalize_hostname("  Example.COM. ") == "example.com"


def test_normalize_hostname_keeps_sentinels() -> None:
    assert normalize_hostname("all-urls") == "all-urls"
    assert normalize_hostname("*") == "*"


def test_normalize_hostname_ip_and_intranet() -> None:
    assert normalize_hostname("http://192.168.1.10/admin") == "192.168.1.10"
    assert normalize_hostname("localhost") == "localhost"


@pytest.mark.parametrize("value", ["", "   ", "not a host"])
def test_normalize_hostname_rejects_garbage(value: str) -> None:
    with pytest.raises(ValueError):
        normalize_hostname(value)
