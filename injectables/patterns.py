"""
patterns.py - Hostname to match-pattern translation

    "example.com"  ->  "*://*.example.com/*"   (http/https, any subdomain, any path)
    "*"            ->  "<all_urls>"
    "all-urls"     ->  "<all_urls>"
"""
from __future__ import annotations

from typing import Final, Iterable

from injectables.hostnames import is_wildcard

ALL_URLS_PATTERN: Final = "<all_urls>"
ANY_URL_PATTERN: Final = "*://*/*"

# Either of these makes every other pattern in a list redundant
_UNIVERSAL_PATTERNS = frozenset({ALL_URLS_PATTERN, ANY_URL_PATTERN})


def to_match_pattern(hostname: str) -> str:
    """
    Example:
        >>> to_match_pattern("a.com")
        '*://*.a.com/*'
        >>> to_match_pattern("*")
        '<all_urls>'
    """
    if is_wildcard(hostname):
        return ALL_URLS_PATTERN
    return f"*://*.{hostname}/*"


def to_match_patterns(hostnames: Iterable[str]) -> list[str]:
    return [to_match_pattern(hn) for hn in hostnames]


def normalize(patterns: list[str]) -> list[str]:
    """
    Collapse a pattern list holding a universal pattern to just "<all_urls>".

    Single-element lists are returned as-is.

    Example:
        >>> normalize(["<all_urls>", "*://*.a.com/*"])
        ['<all_urls>']
        >>> normalize(["*://*/*"])
        ['*://*/*']
    """
    if len(patterns) <= 1:
        return list(patterns)
    if any(p in _UNIVERSAL_PATTERNS for p in patterns):
        return [ALL_URLS_PATTERN]
    return list(patterns)
