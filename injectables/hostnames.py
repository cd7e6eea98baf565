"""
hostnames.py - Hostname Set Algebra

Pure functions over collections of hostnames. A hostname is one of:

    - a literal domain:        "www.example.com"
    - a DNS suffix:            "example.com" covers "a.example.com", "a.b.example.com"
    - a wildcard sentinel:     "*" or "all-urls", meaning every origin

ANCESTOR MATCHING:
    A hostname is a descendant of a set when walking up its labels hits a
    member of that set:

        "x.y.example.com" -> "y.example.com" -> "example.com" -> "com"

    The walk covers every suffix, down to the bare TLD. A set holding either
    wildcard sentinel contains every hostname.

ORDERING:
    Results keep the order of the left-hand operand so that the match-pattern
    lists built from them are stable from one reconciliation pass to the next.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Collection, Final, Iterable

import tldextract

# Bundled suffix snapshot only, never fetch the list over the network
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())

WILDCARD: Final = "*"
ALL_URLS: Final = "all-urls"
WILDCARD_HOSTNAMES: Final = frozenset({WILDCARD, ALL_URLS})

# Letters, digits, hyphens and underscores per label
HOSTNAME_PATTERN = re.compile(
    r"^[a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9_])?"
    r"(\.[a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9_])?)*$"
)


def is_wildcard(hostname: str) -> bool:
    return hostname in WILDCARD_HOSTNAMES


def has_wildcard(hostnames: Iterable[str]) -> bool:
    """True if the collection holds either wildcard sentinel."""
    if isinstance(hostnames, (set, frozenset)):
        return WILDCARD in hostnames or ALL_URLS in hostnames
    return any(is_wildcard(hn) for hn in hostnames)


def _as_set(hostnames: Iterable[str]) -> Collection[str]:
    if isinstance(hostnames, (set, frozenset)):
        return hostnames
    return set(hostnames)


def parent_hostnames(hostname: str) -> tuple[str, ...]:
    """
    Every suffix of a hostname, dropping the leftmost label each step.

    Example:
        >>> parent_hostnames("a.b.example.com")
        ('b.example.com', 'example.com', 'com')
        >>> parent_hostnames("localhost")
        ()
    """
    parents = []
    hn = hostname
    while True:
        pos = hn.find(".")
        if pos == -1:
            break
        hn = hn[pos + 1:]
        if not hn:
            break
        parents.append(hn)
    return tuple(parents)


def is_descendant_of(hostname: str, hostnames: Iterable[str]) -> bool:
    """
    Check if a hostname falls under any member of a set.

    Literal membership counts, as does a wildcard member or a member that is
    one of the hostname's suffixes.

    Example:
        >>> is_descendant_of("x.y.example.com", {"example.com"})
        True
        >>> is_descendant_of("example.com", {"x.example.com"})
        False
    """
    members = _as_set(hostnames)
    if has_wildcard(members):
        return True
    if hostname in members:
        return True
    return any(parent in members for parent in parent_hostnames(hostname))


def intersect(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """
    Members of `a` that are in `b` or fall under a member of `b`.

    A wildcard in `b` keeps all of `a`.
    """
    members = _as_set(b)
    if has_wildcard(members):
        return list(a)
    return [hn for hn in a if is_descendant_of(hn, members)]


def subtract(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """
    Members of `a` that are neither in `b` nor fall under a member of `b`.

    A wildcard in `b` removes everything.
    """
    members = _as_set(b)
    if has_wildcard(members):
        return []
    return [hn for hn in a if not is_descendant_of(hn, members)]


def union(*collections: Iterable[str]) -> list[str]:
    """Concatenate collections, dropping repeats, first occurrence wins."""
    return list(dict.fromkeys(hn for collection in collections for hn in collection))


# ============================================================================
# NORMALIZATION
# ============================================================================

@lru_cache(maxsize=4096)
def normalize_hostname(value: str) -> str:
    """
    Reduce user input (hostname or URL) to a lowercase hostname.

    Wildcard sentinels pass through unchanged. Scheme, port, path and any
    trailing dot are dropped.

    Raises:
        ValueError: If no hostname can be extracted

    Example:
        >>> normalize_hostname("https://WWW.Example.com:8443/path?q=1")
        'www.example.com'
        >>> normalize_hostname("all-urls")
        'all-urls'
    """
    candidate = value.strip().lower()
    if is_wildcard(candidate):
        return candidate
    candidate = candidate.rstrip(".")
    if not candidate:
        raise ValueError(f"Not a hostname: {value!r}")

    ext = _tld_extract(candidate)
    # fqdn is empty for IPs and single-label intranet names
    hostname = ext.fqdn or ext.ipv4 or ".".join(
        part for part in (ext.subdomain, ext.domain) if part
    )
    hostname = hostname.rstrip(".")
    if not hostname or not HOSTNAME_PATTERN.match(hostname):
        raise ValueError(f"Not a hostname: {value!r}")
    return hostname
