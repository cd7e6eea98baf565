"""
synthesizers.py - Per-category directive builders

Each builder turns the enabled rulesets and the filtering-mode tiers into the
directives its category wants registered right now. Builders are pure: no
I/O, no registry access, and they never look at what is currently registered.

CATEGORIES:

    generic       Generic cosmetic filters, complete tier only, document_idle.
                  Up to two directives: "-all" when complete holds the
                  wildcard (other tiers excluded), "-some" for an explicit
                  hostname list.
    generichigh   High-specificity generic CSS, complete tier only,
                  document_end. One directive.
    specific      Hostname-specific cosmetics, optimal + complete tiers,
                  document_start. One directive.
    procedural    Procedural cosmetics, same scope as specific.
    scriptlets    One directive per (ruleset, world), optimal + complete tiers,
                  document_start, in the requested world.

Per-ruleset generic overrides ("hide" / "unhide" hostnames) are gathered from
every enabled ruleset, even those with no generic rules of their own.
"""
from __future__ import annotations

from typing import Mapping, Sequence

from injectables.config import EngineConfig
from injectables.directives import (
    CSS_PROCEDURAL_API_JS,
    DOCUMENT_END,
    DOCUMENT_IDLE,
    DOCUMENT_START,
    GENERIC,
    GENERIC_HIGH,
    PROCEDURAL,
    SPECIFIC,
    WORLDS,
    Directive,
    bootstrap_files,
    category_trailer,
    css_id,
    generic_all_id,
    generic_some_id,
    ruleset_file,
    scriptlet_file,
    scriptlet_id,
)
from injectables.hostnames import has_wildcard, intersect, subtract
from injectables.metadata import GenericHostnameOverride, RulesetDescriptor, ScriptletWorldMap
from injectables.modes import FilteringModeSets, Tier
from injectables.patterns import ALL_URLS_PATTERN, normalize, to_match_patterns


def _ruleset_files(config: EngineConfig, rulesets: Sequence[RulesetDescriptor], category: str) -> list[str]:
    return [
        ruleset_file(config, category, ruleset.id)
        for ruleset in rulesets
        if ruleset.count(category) > 0
    ]


def _generic_overrides(
    rulesets: Sequence[RulesetDescriptor],
    overrides: Mapping[str, GenericHostnameOverride],
) -> tuple[list[str], list[str]]:
    """(hide, unhide) hostnames of all enabled rulesets, in ruleset order."""
    hide: list[str] = []
    unhide: list[str] = []
    for ruleset in rulesets:
        override = overrides.get(ruleset.id)
        if override is None:
            continue
        hide.extend(override.hide)
        unhide.extend(override.unhide)
    return hide, unhide


def _below_complete(modes: FilteringModeSets) -> list[str]:
    return [*modes.ordered(Tier.NONE), *modes.ordered(Tier.BASIC), *modes.ordered(Tier.OPTIMAL)]


# ============================================================================
# GENERIC COSMETICS
# ============================================================================

def build_generic(
    rulesets: Sequence[RulesetDescriptor],
    overrides: Mapping[str, GenericHostnameOverride],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    hide, unhide = _generic_overrides(rulesets, overrides)
    files = _ruleset_files(config, rulesets, GENERIC)
    if not files:
        return []
    js = tuple([*bootstrap_files(config), *files, category_trailer(config, GENERIC)])

    included_by_mode = modes.ordered(Tier.COMPLETE)
    excluded_by_mode = _below_complete(modes)

    if not has_wildcard(modes.complete):
        matches = [
            *to_match_patterns(subtract(included_by_mode, unhide)),
            *to_match_patterns(intersect(included_by_mode, hide)),
        ]
        if not matches:
            return []
        return [
            Directive(
                id=generic_some_id(config),
                js=js,
                matches=tuple(matches),
                run_at=DOCUMENT_IDLE,
            )
        ]

    directives = [
        Directive(
            id=generic_all_id(config),
            js=js,
            matches=(ALL_URLS_PATTERN,),
            exclude_matches=tuple([
                *to_match_patterns(excluded_by_mode),
                *to_match_patterns(unhide),
            ]),
            run_at=DOCUMENT_IDLE,
        )
    ]

    # Forced-on hostnames the "-all" directive excludes through their tier
    some_matches = to_match_patterns(subtract(hide, excluded_by_mode))
    if some_matches:
        directives.append(
            Directive(
                id=generic_some_id(config),
                js=js,
                matches=tuple(some_matches),
                run_at=DOCUMENT_IDLE,
            )
        )
    return directives


def build_generic_high(
    rulesets: Sequence[RulesetDescriptor],
    overrides: Mapping[str, GenericHostnameOverride],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    _, unhide = _generic_overrides(rulesets, overrides)
    css = _ruleset_files(config, rulesets, GENERIC_HIGH)
    if not css:
        return []

    if has_wildcard(modes.complete):
        matches = [ALL_URLS_PATTERN]
        exclude_matches = [
            *to_match_patterns(_below_complete(modes)),
            *to_match_patterns(unhide),
        ]
    else:
        matches = to_match_patterns(subtract(modes.ordered(Tier.COMPLETE), unhide))
        exclude_matches = []
    if not matches:
        return []

    return [
        Directive(
            id=css_id(config, GENERIC_HIGH),
            css=tuple(css),
            matches=tuple(matches),
            exclude_matches=tuple(exclude_matches),
            run_at=DOCUMENT_END,
        )
    ]


# ============================================================================
# SPECIFIC AND PROCEDURAL COSMETICS
# ============================================================================

def _optimal_and_up(
    category: str,
    rulesets: Sequence[RulesetDescriptor],
    modes: FilteringModeSets,
    config: EngineConfig,
    extra_bootstrap: tuple[str, ...] = (),
) -> list[Directive]:
    files = _ruleset_files(config, rulesets, category)
    if not files:
        return []

    matches = [
        *to_match_patterns(modes.ordered(Tier.OPTIMAL)),
        *to_match_patterns(modes.ordered(Tier.COMPLETE)),
    ]
    if not matches:
        return []
    matches = normalize(matches)

    # An excluded wildcard would cancel the whole include list
    exclude_matches: list[str] = []
    if not has_wildcard(modes.none):
        exclude_matches.extend(to_match_patterns(modes.ordered(Tier.NONE)))
    if not has_wildcard(modes.basic):
        exclude_matches.extend(to_match_patterns(modes.ordered(Tier.BASIC)))

    js = [
        *bootstrap_files(config, *extra_bootstrap),
        *files,
        category_trailer(config, category),
    ]
    return [
        Directive(
            id=css_id(config, category),
            js=tuple(js),
            matches=tuple(matches),
            exclude_matches=tuple(exclude_matches),
            run_at=DOCUMENT_START,
        )
    ]


def build_specific(
    rulesets: Sequence[RulesetDescriptor],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    return _optimal_and_up(SPECIFIC, rulesets, modes, config)


def build_procedural(
    rulesets: Sequence[RulesetDescriptor],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    return _optimal_and_up(PROCEDURAL, rulesets, modes, config, (CSS_PROCEDURAL_API_JS,))


# ============================================================================
# SCRIPTLETS
# ============================================================================

def build_scriptlets(
    rulesets: Sequence[RulesetDescriptor],
    worlds_by_ruleset: Mapping[str, ScriptletWorldMap],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    """
    One directive per (ruleset, world) with at least one target hostname.

    With a wildcard in optimal or complete, each world targets its own
    hostname list and the none/basic tiers are excluded. Otherwise targets
    are narrowed to the optimal + complete hostnames, and a world listing
    the wildcard takes all of them.
    """
    broad_permission = has_wildcard(modes.optimal) or has_wildcard(modes.complete)
    revoked_matches = [
        *to_match_patterns(modes.ordered(Tier.NONE)),
        *to_match_patterns(modes.ordered(Tier.BASIC)),
    ]
    granted = [*modes.ordered(Tier.OPTIMAL), *modes.ordered(Tier.COMPLETE)]

    directives = []
    for ruleset in rulesets:
        worlds = worlds_by_ruleset.get(ruleset.id)
        if not worlds:
            continue
        for world, hostnames in worlds.items():
            if world not in WORLDS:
                continue
            exclude_matches: list[str] = []
            targets: list[str] = []
            if broad_permission:
                exclude_matches = revoked_matches
                targets = list(hostnames)
            elif granted:
                if has_wildcard(hostnames):
                    targets = granted
                else:
                    targets = intersect(hostnames, granted)
            if not targets:
                continue

            directives.append(
                Directive(
                    id=scriptlet_id(config, ruleset.id, world),
                    js=(scriptlet_file(config, ruleset.id, world),),
                    matches=tuple(normalize(to_match_patterns(targets))),
                    exclude_matches=tuple(exclude_matches),
                    run_at=DOCUMENT_START,
                    world=world,
                    match_origin_as_fallback=True,
                )
            )
    return directives


def synthesize(
    rulesets: Sequence[RulesetDescriptor],
    overrides: Mapping[str, GenericHostnameOverride],
    worlds_by_ruleset: Mapping[str, ScriptletWorldMap],
    modes: FilteringModeSets,
    config: EngineConfig,
) -> list[Directive]:
    """Every directive the current inputs call for."""
    return [
        *build_procedural(rulesets, modes, config),
        *build_scriptlets(rulesets, worlds_by_ruleset, modes, config),
        *build_specific(rulesets, modes, config),
        *build_generic(rulesets, overrides, modes, config),
        *build_generic_high(rulesets, overrides, modes, config),
    ]
