"""
metadata.py - Ruleset metadata loading with caching

Three JSON files describe the compiled rulesets:

    ruleset-details.json    [{"id": "easylist", "css": {"generic": 3, ...}}, ...]
    scriptlet-details.json  [["easylist", {"MAIN": [...], "ISOLATED": [...]}], ...]
    generic-details.json    [["easylist", {"hide": [...], "unhide": [...]}], ...]

The two pair-list files may also be plain objects keyed by ruleset id.

They are read from a directory (aiofiles) or over HTTP (aiohttp), and
memoized in a MetadataCache until invalidated. Every loader degrades to an
empty result on failure: a broken metadata file means fewer directives, never
a failed pass.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import aiofiles
import aiohttp

from injectables.config import (
    DEFAULT_BACKOFF,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    GENERIC_DETAILS_FILE,
    RULESET_DETAILS_FILE,
    SCRIPTLET_DETAILS_FILE,
    EngineConfig,
)
from injectables.directives import CSS_CATEGORIES, WORLDS
from injectables.modes import FilteringModeSets, FilteringModeStore


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class RulesetDescriptor:
    """One compiled ruleset and how many cosmetic rules it holds per category."""
    id: str
    name: str = ""
    css: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    def count(self, category: str) -> int:
        return int(self.css.get(category) or 0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RulesetDescriptor:
        counts = data.get("css") or {}
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            css=MappingProxyType({
                category: int(counts.get(category) or 0) for category in CSS_CATEGORIES
            }),
        )


def _hostname_list(value: Any) -> tuple[str, ...]:
    """Hostnames from a JSON array; any other shape counts as empty."""
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(hn for hn in value if isinstance(hn, str))


@dataclass(frozen=True)
class GenericHostnameOverride:
    """Hostnames where a ruleset forces generic cosmetics on (hide) or off (unhide)."""
    hide: tuple[str, ...] = ()
    unhide: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenericHostnameOverride:
        return cls(
            hide=_hostname_list(data.get("hide")),
            unhide=_hostname_list(data.get("unhide")),
        )


# World tag -> target hostnames ("*" for any permitted origin)
ScriptletWorldMap = Mapping[str, tuple[str, ...]]


def scriptlet_world_map(data: Mapping[str, Any]) -> ScriptletWorldMap:
    """Keep the known worlds, in file order."""
    return MappingProxyType({
        world: _hostname_list(hostnames)
        for world, hostnames in data.items()
        if world in WORLDS
    })


# ============================================================================
# SOURCES
# ============================================================================

class MetadataSource:
    """Where metadata files come from. fetch_json() returns None on any failure."""

    async def fetch_json(self, name: str) -> Any | None:
        raise NotImplementedError


class DirectorySource(MetadataSource):
    """Reads metadata files from a local rulesets directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    async def fetch_json(self, name: str) -> Any | None:
        path = self.directory / name
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, json.JSONDecodeError, UnicodeDecodeError):
            return None

    def __repr__(self) -> str:
        return f"DirectorySource({str(self.directory)!r})"


class HttpSource(MetadataSource):
    """
    Fetches metadata files relative to a base URL.

    Server errors and timeouts are retried with exponential backoff; client
    errors (404 and friends) are final.
    """

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff

    def url_for(self, name: str) -> str:
        return f"{self.base_url}/{name.lstrip('/')}"

    async def fetch_json(self, name: str) -> Any | None:
        if self.session is not None:
            return await self._fetch(self.session, self.url_for(name))
        async with aiohttp.ClientSession() as session:
            return await self._fetch(session, self.url_for(name))

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> Any | None:
        for attempt in range(self.retries):
            last_attempt = attempt == self.retries - 1
            try:
                async with session.get(
                    url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status >= 500 and not last_attempt:
                        await asyncio.sleep(self.backoff * 2 ** attempt)
                        continue
                    if response.status >= 400:
                        return None
                    return await response.json(content_type=None)
            except (asyncio.TimeoutError, aiohttp.ClientConnectionError):
                if last_attempt:
                    return None
                await asyncio.sleep(self.backoff * 2 ** attempt)
            except (aiohttp.ClientError, json.JSONDecodeError, UnicodeDecodeError):
                return None
        return None

    def __repr__(self) -> str:
        return f"HttpSource({self.base_url!r})"


def source_from_location(location: str) -> MetadataSource:
    """HttpSource for http(s) URLs, DirectorySource for everything else."""
    if location.startswith(("http://", "https://")):
        return HttpSource(location)
    return DirectorySource(location)


# ============================================================================
# CACHE
# ============================================================================

class MetadataCache:
    """
    Memoized metadata maps. invalidate() drops everything, the next read
    goes back to the source.
    """

    def __init__(self) -> None:
        self.descriptors: dict[str, RulesetDescriptor] | None = None
        self.scriptlets: dict[str, ScriptletWorldMap] | None = None
        self.generic: dict[str, GenericHostnameOverride] | None = None

    def invalidate(self) -> None:
        self.descriptors = None
        self.scriptlets = None
        self.generic = None


def _pairs(data: Any) -> Iterable[tuple[str, Any]]:
    """Entries of a pair-list or an id-keyed object."""
    if isinstance(data, Mapping):
        return data.items()
    if isinstance(data, list):
        return (
            (entry[0], entry[1])
            for entry in data
            if isinstance(entry, (list, tuple)) and len(entry) == 2
        )
    return ()


# ============================================================================
# STORE
# ============================================================================

class MetadataStore:
    """
    Read side of everything a reconciliation pass needs besides the registry.

    Args:
        source: Where ruleset metadata files are read from
        modes: Filtering-mode tier store
        enabled_rulesets: Ids of the rulesets currently enabled, in order
        cache: Shared cache instance; a private one is created if omitted
        config: Only used for debug output
    """

    def __init__(
        self,
        source: MetadataSource,
        modes: FilteringModeStore | None = None,
        enabled_rulesets: Iterable[str] = (),
        cache: MetadataCache | None = None,
        config: EngineConfig | None = None,
    ):
        self.source = source
        self.modes = modes if modes is not None else FilteringModeStore()
        self.cache = cache if cache is not None else MetadataCache()
        self.config = config if config is not None else EngineConfig()
        self._enabled = list(dict.fromkeys(enabled_rulesets))

    def set_enabled_rulesets(self, ruleset_ids: Iterable[str]) -> None:
        self._enabled = list(dict.fromkeys(ruleset_ids))

    async def get_enabled_rulesets(self) -> list[str]:
        return list(self._enabled)

    async def get_ruleset_descriptors(self) -> dict[str, RulesetDescriptor]:
        if self.cache.descriptors is not None:
            return self.cache.descriptors
        data = await self.source.fetch_json(RULESET_DETAILS_FILE)
        descriptors: dict[str, RulesetDescriptor] = {}
        if isinstance(data, list):
            for entry in data:
                try:
                    descriptor = RulesetDescriptor.from_dict(entry)
                except (KeyError, TypeError, ValueError, AttributeError):
                    self.config.log(f"skipping malformed ruleset entry: {entry!r}")
                    continue
                descriptors[descriptor.id] = descriptor
        else:
            self.config.log(f"no ruleset details from {self.source!r}")
        self.cache.descriptors = descriptors
        return descriptors

    async def get_generic_hostname_overrides(self) -> dict[str, GenericHostnameOverride]:
        if self.cache.generic is not None:
            return self.cache.generic
        data = await self.source.fetch_json(GENERIC_DETAILS_FILE)
        overrides: dict[str, GenericHostnameOverride] = {}
        for ruleset_id, entry in _pairs(data):
            if isinstance(entry, Mapping):
                overrides[str(ruleset_id)] = GenericHostnameOverride.from_dict(entry)
        if data is None:
            self.config.log(f"no generic details from {self.source!r}")
        self.cache.generic = overrides
        return overrides

    async def get_scriptlet_world_maps(self) -> dict[str, ScriptletWorldMap]:
        if self.cache.scriptlets is not None:
            return self.cache.scriptlets
        data = await self.source.fetch_json(SCRIPTLET_DETAILS_FILE)
        worlds: dict[str, ScriptletWorldMap] = {}
        for ruleset_id, entry in _pairs(data):
            if isinstance(entry, Mapping):
                worlds[str(ruleset_id)] = scriptlet_world_map(entry)
        if data is None:
            self.config.log(f"no scriptlet details from {self.source!r}")
        self.cache.scriptlets = worlds
        return worlds

    async def get_filtering_mode_sets(self) -> FilteringModeSets:
        try:
            return (await self.modes.get()).copy()
        except (OSError, ValueError, AttributeError) as e:
            self.config.log(f"filtering modes unreadable, using defaults: {e}")
            return FilteringModeSets.default()

    async def get_enabled_descriptors(self) -> list[RulesetDescriptor]:
        """Descriptors of the enabled rulesets, in enabled order, unknown ids skipped."""
        enabled, descriptors = await asyncio.gather(
            self.get_enabled_rulesets(),
            self.get_ruleset_descriptors(),
        )
        return [descriptors[rid] for rid in enabled if rid in descriptors]
