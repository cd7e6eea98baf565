"""
directives.py - Injection directives

A Directive is one content-script registration: which files, on which
origins, when, and in which world. Directives are rebuilt from scratch on every
pass and never mutated; a changed directive is replaced under the same id.

IDS:
    {tag}-css-generic-all
    {tag}-css-generic-some
    {tag}-css-generichigh
    {tag}-css-specific
    {tag}-css-procedural
    {tag}-scriptlet-{rulesetId}-{world}

These are stable across versions, previously registered state is matched on
them.

WIRE FORMAT:
    The registry speaks the browser's content-script shape (camelCase keys,
    empty lists omitted). The browser may hand file paths back without their
    leading slash, normalize_registered() puts it back before comparing.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Final, Iterable, Mapping

from injectables.config import EngineConfig

# Injection timing
DOCUMENT_START: Final = "document_start"
DOCUMENT_END: Final = "document_end"
DOCUMENT_IDLE: Final = "document_idle"

# Execution worlds
WORLD_MAIN: Final = "MAIN"
WORLD_ISOLATED: Final = "ISOLATED"
WORLDS: Final = (WORLD_MAIN, WORLD_ISOLATED)

# Directive categories
GENERIC: Final = "generic"
GENERIC_HIGH: Final = "generichigh"
SPECIFIC: Final = "specific"
PROCEDURAL: Final = "procedural"
CSS_CATEGORIES: Final = (GENERIC, GENERIC_HIGH, SPECIFIC, PROCEDURAL)

# Shared bootstrap files, relative to the resource root
CSS_API_JS: Final = "js/scripting/css-api.js"
ISOLATED_API_JS: Final = "js/scripting/isolated-api.js"
CSS_PROCEDURAL_API_JS: Final = "js/scripting/css-procedural-api.js"


# ============================================================================
# IDS AND PATHS
# ============================================================================

def generic_all_id(config: EngineConfig) -> str:
    return f"{config.tag}-css-generic-all"


def generic_some_id(config: EngineConfig) -> str:
    return f"{config.tag}-css-generic-some"


def css_id(config: EngineConfig, category: str) -> str:
    """Id for the single-directive categories (generichigh, specific, procedural)."""
    return f"{config.tag}-css-{category}"


def scriptlet_id(config: EngineConfig, ruleset_id: str, world: str) -> str:
    return f"{config.tag}-scriptlet-{ruleset_id}-{world.lower()}"


def bootstrap_files(config: EngineConfig, *extra: str) -> list[str]:
    """The two shared bootstrap files plus any category-specific ones."""
    return [config.resource(path) for path in (CSS_API_JS, ISOLATED_API_JS, *extra)]


def category_trailer(config: EngineConfig, category: str) -> str:
    """Script that applies the filters collected by a cosmetic category."""
    return config.resource(f"js/scripting/css-{category}.js")


def ruleset_file(config: EngineConfig, category: str, ruleset_id: str) -> str:
    extension = "css" if category == GENERIC_HIGH else "js"
    return config.resource(f"rulesets/scripting/{category}/{ruleset_id}.{extension}")


def scriptlet_file(config: EngineConfig, ruleset_id: str, world: str) -> str:
    return config.resource(f"rulesets/scripting/scriptlet/{world.lower()}/{ruleset_id}.js")


# ============================================================================
# DIRECTIVE
# ============================================================================

@dataclass(frozen=True)
class Directive:
    """A desired or registered content-script registration."""
    id: str
    matches: tuple[str, ...]
    js: tuple[str, ...] = ()
    css: tuple[str, ...] = ()
    exclude_matches: tuple[str, ...] = ()
    run_at: str = DOCUMENT_IDLE
    world: str = WORLD_ISOLATED
    all_frames: bool = True
    match_origin_as_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.js:
            data["js"] = list(self.js)
        if self.css:
            data["css"] = list(self.css)
        data["matches"] = list(self.matches)
        if self.exclude_matches:
            data["excludeMatches"] = list(self.exclude_matches)
        data["runAt"] = self.run_at
        data["world"] = self.world
        data["allFrames"] = self.all_frames
        if self.match_origin_as_fallback:
            data["matchOriginAsFallback"] = True
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Directive:
        return cls(
            id=data["id"],
            matches=tuple(data.get("matches") or ()),
            js=tuple(data.get("js") or ()),
            css=tuple(data.get("css") or ()),
            exclude_matches=tuple(data.get("excludeMatches") or ()),
            run_at=data.get("runAt") or DOCUMENT_IDLE,
            world=data.get("world") or WORLD_ISOLATED,
            all_frames=bool(data.get("allFrames", True)),
            match_origin_as_fallback=bool(data.get("matchOriginAsFallback", False)),
        )


def _with_leading_slash(paths: Iterable[str]) -> tuple[str, ...]:
    return tuple(p if p.startswith("/") else f"/{p}" for p in paths)


def normalize_registered(entries: Iterable[Mapping[str, Any]]) -> list[Directive]:
    """
    Convert registry entries to Directives with absolute file paths.

    Example:
        >>> [d.js for d in normalize_registered([{"id": "x", "js": ["a.js"], "matches": []}])]
        [('/a.js',)]
    """
    directives = []
    for entry in entries:
        directive = Directive.from_dict(entry)
        directives.append(
            replace(
                directive,
                js=_with_leading_slash(directive.js),
                css=_with_leading_slash(directive.css),
            )
        )
    return directives


def is_same_directive(registered: Directive, desired: Directive) -> bool:
    """
    True if a registered directive already does what the desired one asks.

    File lists compare as sets, match and exclude lists compare in order.
    """
    return (
        frozenset(registered.js) == frozenset(desired.js)
        and frozenset(registered.css) == frozenset(desired.css)
        and registered.matches == desired.matches
        and registered.exclude_matches == desired.exclude_matches
    )
