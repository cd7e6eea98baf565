"""
modes.py - Filtering-mode tiers

Every origin gets one of four ascending tiers of injection capability:

    none      Nothing is injected
    basic     Nothing cosmetic or scriptlet-based is injected
    optimal   Specific/procedural cosmetics and scriptlets
    complete  Everything, including generic cosmetics

The tiers are stored as four hostname sets. A wildcard sentinel ("all-urls",
or its synonym "*") in a tier makes that tier the default for hostnames listed nowhere else. Nothing stops
a hostname from sitting in two tiers at once; assign() is the only modifier
here and it clears the other three tiers first.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Awaitable, Callable

import aiofiles
import aiofiles.os

from injectables.hostnames import (
    ALL_URLS,
    WILDCARD_HOSTNAMES,
    has_wildcard,
    is_wildcard,
    normalize_hostname,
)


class Tier(IntEnum):
    NONE = 0
    BASIC = 1
    OPTIMAL = 2
    COMPLETE = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | int) -> Tier:
        """
        Accept a tier name ("optimal") or number (2).

        Raises:
            ValueError: If the value names no tier
        """
        if isinstance(value, int):
            return cls(value)
        text = value.strip().lower()
        if text.isdigit():
            return cls(int(text))
        for tier in cls:
            if tier.label == text:
                return tier
        raise ValueError(f"Unknown filtering mode: {value!r}")


DEFAULT_TIER = Tier.BASIC

# Lookup order when a hostname is in more than one tier
_LOOKUP_ORDER = (Tier.NONE, Tier.BASIC, Tier.OPTIMAL, Tier.COMPLETE)


@dataclass
class FilteringModeSets:
    """The four tier sets. Iterate with ordered() for stable output."""
    none: set[str] = field(default_factory=set)
    basic: set[str] = field(default_factory=set)
    optimal: set[str] = field(default_factory=set)
    complete: set[str] = field(default_factory=set)

    @classmethod
    def default(cls) -> FilteringModeSets:
        return cls(complete={ALL_URLS})

    def tier_set(self, tier: Tier) -> set[str]:
        return getattr(self, tier.label)

    def ordered(self, tier: Tier) -> list[str]:
        return sorted(self.tier_set(tier))

    def copy(self) -> FilteringModeSets:
        return FilteringModeSets(
            none=set(self.none),
            basic=set(self.basic),
            optimal=set(self.optimal),
            complete=set(self.complete),
        )

    def lookup(self, hostname: str) -> Tier:
        """
        Effective tier for a hostname.

        Exact membership first, then any listed suffix. Each step checks the
        tiers none -> complete and the first tier that matches wins, so a
        suffix in a lower tier beats a closer one in a higher tier. Unlisted
        hostnames get the tier holding a wildcard ("all-urls" or "*"), or
        basic if no tier holds one.
        """
        if is_wildcard(hostname):
            for tier in _LOOKUP_ORDER:
                if has_wildcard(self.tier_set(tier)):
                    return tier
            return DEFAULT_TIER

        for tier in _LOOKUP_ORDER:
            if hostname in self.tier_set(tier):
                return tier
        for tier in _LOOKUP_ORDER:
            for hn in self.tier_set(tier):
                if not is_wildcard(hn) and hostname.endswith(f".{hn}"):
                    return tier
        return self.lookup(ALL_URLS)

    def default_mode(self) -> Tier:
        return self.lookup(ALL_URLS)

    def assign(self, hostname: str, tier: Tier) -> None:
        """
        Move a hostname into exactly one tier.

        Either wildcard spelling moves the default: both sentinels are cleared
        everywhere and "all-urls" lands in the target tier.
        """
        if is_wildcard(hostname):
            hostname = ALL_URLS
            stale = WILDCARD_HOSTNAMES
        else:
            stale = frozenset({hostname})
        for other in _LOOKUP_ORDER:
            self.tier_set(other).difference_update(stale)
        self.tier_set(tier).add(hostname)

    def overlapping(self) -> list[str]:
        """Hostnames listed in more than one tier. The two wildcards count as one."""
        seen: set[str] = set()
        repeated: set[str] = set()
        for tier in _LOOKUP_ORDER:
            for hn in {ALL_URLS if is_wildcard(hn) else hn for hn in self.tier_set(tier)}:
                if hn in seen:
                    repeated.add(hn)
                seen.add(hn)
        return sorted(repeated)

    def to_dict(self) -> dict[str, list[str]]:
        return {tier.label: self.ordered(tier) for tier in _LOOKUP_ORDER}

    @classmethod
    def from_dict(cls, data: dict) -> FilteringModeSets:
        return cls(
            none=set(data.get("none") or ()),
            basic=set(data.get("basic") or ()),
            optimal=set(data.get("optimal") or ()),
            complete=set(data.get("complete") or ()),
        )


# ============================================================================
# STORE
# ============================================================================

ChangeListener = Callable[[], Awaitable[object]]


class FilteringModeStore:
    """
    Holds the tier sets, optionally persisted to a JSON file.

    Listeners are awaited after every change, in registration order.
    """

    def __init__(self, path: str | Path | None = None, modes: FilteringModeSets | None = None):
        self.path = Path(path) if path is not None else None
        self._modes = modes
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def get(self) -> FilteringModeSets:
        if self._modes is None:
            self._modes = await self._load()
        return self._modes

    async def _load(self) -> FilteringModeSets:
        if self.path is None or not self.path.exists():
            return FilteringModeSets.default()
        async with aiofiles.open(self.path, encoding="utf-8") as f:
            data = json.loads(await f.read())
        return FilteringModeSets.from_dict(data)

    async def save(self) -> None:
        """Write the tier sets atomically (temp file + replace)."""
        if self.path is None or self._modes is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(self._modes.to_dict(), indent=2))
        await aiofiles.os.replace(temp_path, self.path)

    async def get_filtering_mode(self, hostname: str) -> Tier:
        modes = await self.get()
        return modes.lookup(normalize_hostname(hostname))

    async def get_default_filtering_mode(self) -> Tier:
        return (await self.get()).default_mode()

    async def set_filtering_mode(self, hostname: str, tier: Tier | str | int) -> Tier:
        tier = Tier.parse(tier) if not isinstance(tier, Tier) else tier
        modes = await self.get()
        modes.assign(normalize_hostname(hostname), tier)
        await self.save()
        for listener in self._listeners:
            await listener()
        return tier

    async def set_default_filtering_mode(self, tier: Tier | str | int) -> Tier:
        return await self.set_filtering_mode(ALL_URLS, tier)
