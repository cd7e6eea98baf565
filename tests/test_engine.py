from __future__ import annotations

import asyncio
from pathlib import Path

from injectables.config import EngineConfig
from injectables.directives import Directive
from injectables.engine import (
    BUSY,
    COMPLETED,
    FAILED,
    PROCESS_GUARD,
    UNSUPPORTED,
    ReconciliationEngine,
    ReentrancyGuard,
    diff_directives,
)
from injectables.metadata import DirectorySource, MetadataStore
from injectables.modes import FilteringModeSets, FilteringModeStore, Tier
from injectables.registry import InMemoryRegistry, RegistryError, UnsupportedRegistry

DETAILS = [
    {"id": "easylist", "name": "EasyList", "css": {"generic": 3, "generichigh": 1, "specific": 2, "procedural": 1}},
    {"id": "ublock-filters", "name": "uBO filters", "css": {"specific": 4}},
]
SCRIPTLETS = [["ublock-filters", {"MAIN": ["*"], "ISOLATED": ["example.com"]}]]
GENERIC = [["easylist", {"hide": ["forced.com"], "unhide": ["quiet.com"]}]]


def make_engine(
    rulesets_dir: Path,
    registry,
    enabled=("easylist", "ublock-filters"),
    modes: FilteringModeSets | None = None,
    config: EngineConfig | None = None,
) -> ReconciliationEngine:
    config = config or EngineConfig()
    metadata = MetadataStore(
        DirectorySource(rulesets_dir),
        modes=FilteringModeStore(modes=modes or FilteringModeSets.default()),
        enabled_rulesets=enabled,
        config=config,
    )
    return ReconciliationEngine(metadata, registry, config)


class FlakyRegistry(InMemoryRegistry):
    """Rejects writes while `failing` is set."""

    def __init__(self, entries=()):
        super().__init__(entries)
        self.failing = True
        self.register_calls = 0
        self.unregister_calls = 0

    async def register(self, directives):
        self.register_calls += 1
        if self.failing:
            raise RegistryError("register rejected")
        await super().register(directives)

    async def unregister(self, ids):
        self.unregister_calls += 1
        if self.failing:
            raise RegistryError("unregister rejected")
        await super().unregister(ids)


class UnreadableRegistry(InMemoryRegistry):
    async def list_registered(self):
        raise RegistryError("registry offline")


class SlowRegistry(InMemoryRegistry):
    """list_registered() blocks until `release` is set."""

    def __init__(self, entries=()):
        super().__init__(entries)
        self.release = asyncio.Event()
        self.entered = asyncio.Event()

    async def list_registered(self):
        self.entered.set()
        await self.release.wait()
        return await super().list_registered()


# ============================================================================
# DIFF
# ============================================================================

def directive(directive_id: str, **kwargs) -> Directive:
    kwargs.setdefault("matches", ("<all_urls>",))
    kwargs.setdefault("js", ("/a.js", "/b.js"))
    return Directive(id=directive_id, **kwargs)


def test_diff_adds_missing_and_removes_stale() -> None:
    to_add, to_remove = diff_directives([directive("x")], [directive("y")])
    assert [d.id for d in to_add] == ["x"]
    assert to_remove == ["y"]


def test_diff_ignores_file_order() -> None:
    to_add, to_remove = diff_directives(
        [directive("x", js=("/b.js", "/a.js"))],
        [directive("x")],
    )
    assert to_add == []
    assert to_remove == []


def test_diff_replaces_on_match_order_change() -> None:
    desired = directive("x", matches=("*://*.a.com/*", "*://*.b.com/*"))
    current = directive("x", matches=("*://*.b.com/*", "*://*.a.com/*"))
    to_add, to_remove = diff_directives([desired], [current])
    assert to_add == [desired]
    assert to_remove == ["x"]


def test_diff_replaces_on_exclude_change() -> None:
    desired = directive("x", exclude_matches=("*://*.a.com/*",))
    to_add, to_remove = diff_directives([desired], [directive("x")])
    assert to_add == [desired]
    assert to_remove == ["x"]


# ============================================================================
# RECONCILE
# ============================================================================

def test_first_pass_registers_then_second_pass_is_idle(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = InMemoryRegistry()
    engine = make_engine(rulesets_dir, registry)

    async def scenario():
        return await engine.run_pass(), await engine.run_pass()

    first, second = asyncio.run(scenario())

    assert first.status == COMPLETED
    assert set(first.to_add) == {
        "adblocker-css-procedural",
        "adblocker-scriptlet-ublock-filters-main",
        "adblocker-scriptlet-ublock-filters-isolated",
        "adblocker-css-specific",
        "adblocker-css-generic-all",
        "adblocker-css-generic-some",
        "adblocker-css-generichigh",
    }
    assert first.to_remove == []
    assert set(registry.ids) == set(first.to_add)

    assert second.status == COMPLETED
    assert second.to_add == []
    assert second.to_remove == []


def test_registered_entry_shape(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = InMemoryRegistry()
    asyncio.run(make_engine(rulesets_dir, registry).reconcile())

    entry = registry.get("adblocker-scriptlet-ublock-filters-main")
    assert entry == {
        "id": "adblocker-scriptlet-ublock-filters-main",
        "js": ["/adblocker/rulesets/scripting/scriptlet/main/ublock-filters.js"],
        "matches": ["<all_urls>"],
        "runAt": "document_start",
        "world": "MAIN",
        "allFrames": True,
        "matchOriginAsFallback": True,
    }


def test_all_rulesets_disabled_unregisters_only_our_ids(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = FlakyRegistry([
        {"id": "adblocker-css-specific", "js": ["a.js"], "matches": ["<all_urls>"]},
        {"id": "wallet-inpage", "js": ["inpage.js"], "matches": ["<all_urls>"]},
    ])
    registry.failing = False
    engine = make_engine(rulesets_dir, registry, enabled=())

    result = asyncio.run(engine.run_pass())

    assert result.status == COMPLETED
    assert result.to_remove == ["adblocker-css-specific"]
    assert result.to_add == []
    assert registry.register_calls == 0
    assert registry.unregister_calls == 1
    assert registry.ids == ["wallet-inpage"]


def test_changed_inputs_replace_under_same_id(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = InMemoryRegistry()
    modes = FilteringModeSets(basic={"example.com"}, complete={"all-urls"})
    store = FilteringModeStore(modes=modes)
    config = EngineConfig()
    metadata = MetadataStore(
        DirectorySource(rulesets_dir),
        modes=store,
        enabled_rulesets=["easylist"],
        config=config,
    )
    engine = ReconciliationEngine(metadata, registry, config)
    store.add_listener(engine.handle_storage_change)

    async def scenario():
        await engine.reconcile()
        before = registry.get("adblocker-css-generic-all")
        await store.set_filtering_mode("example.com", Tier.COMPLETE)
        return before, registry.get("adblocker-css-generic-all")

    before, after = asyncio.run(scenario())

    assert "*://*.example.com/*" in before["excludeMatches"]
    assert "*://*.example.com/*" not in after["excludeMatches"]


def test_foreign_entries_are_left_alone(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    foreign = {"id": "other-css-specific", "js": ["x.js"], "matches": ["<all_urls>"]}
    registry = InMemoryRegistry([foreign])

    result = asyncio.run(make_engine(rulesets_dir, registry).run_pass())

    assert "other-css-specific" not in result.to_remove
    assert registry.get("other-css-specific") == foreign


def test_write_failures_are_counted_and_pass_still_succeeds(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = FlakyRegistry([
        {"id": "adblocker-stale", "js": ["a.js"], "matches": ["<all_urls>"]},
    ])
    engine = make_engine(rulesets_dir, registry)

    async def scenario():
        failed = await engine.run_pass()
        registry.failing = False
        healed = await engine.run_pass()
        return failed, healed

    failed, healed = asyncio.run(scenario())

    assert failed.ok
    assert failed.failed_removes == 1
    assert failed.failed_adds == len(failed.to_add) == 7
    assert healed.failed_adds == healed.failed_removes == 0
    assert healed.to_remove == ["adblocker-stale"]
    assert len(registry.ids) == 7


def test_registry_read_failure_aborts_pass(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    engine = make_engine(rulesets_dir, UnreadableRegistry())

    result = asyncio.run(engine.run_pass())

    assert result.status == FAILED
    assert result.error == "registry offline"
    assert not engine.guard.held
    assert asyncio.run(engine.reconcile()) is False


def test_missing_metadata_degrades_to_fewer_directives(tmp_path: Path) -> None:
    registry = InMemoryRegistry()
    engine = make_engine(tmp_path / "nowhere", registry)

    result = asyncio.run(engine.run_pass())

    assert result.status == COMPLETED
    assert registry.ids == []


def test_unsupported_host_returns_false(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    engine = make_engine(rulesets_dir, UnsupportedRegistry())

    assert asyncio.run(engine.run_pass()).status == UNSUPPORTED
    assert asyncio.run(engine.reconcile()) is False


def test_concurrent_pass_returns_busy_without_waiting(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)

    async def scenario():
        registry = SlowRegistry()
        engine = make_engine(rulesets_dir, registry)
        first = asyncio.create_task(engine.run_pass())
        await registry.entered.wait()
        second = await engine.run_pass()
        registry.release.set()
        return await first, second, engine.guard.held

    first, second, held = asyncio.run(scenario())

    assert second.status == BUSY
    assert second.ok
    assert first.status == COMPLETED
    assert not held


def test_guard_is_single_slot() -> None:
    guard = ReentrancyGuard()
    assert guard.try_acquire()
    assert not guard.try_acquire()
    guard.release()
    assert guard.try_acquire()


def test_unregister_all_removes_owned_directives(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = InMemoryRegistry([{"id": "other-x", "js": ["x.js"], "matches": ["<all_urls>"]}])
    engine = make_engine(rulesets_dir, registry)

    async def scenario():
        await engine.reconcile()
        return await engine.unregister_all()

    result = asyncio.run(scenario())

    assert len(result.to_remove) == 7
    assert registry.ids == ["other-x"]


def test_storage_change_invalidates_metadata_cache(write_rulesets) -> None:
    rulesets_dir = write_rulesets([{"id": "easylist", "css": {"specific": 1}}])
    registry = InMemoryRegistry()
    engine = make_engine(rulesets_dir, registry, enabled=["easylist"])

    async def scenario():
        await engine.reconcile()
        write_rulesets([{"id": "easylist", "css": {"specific": 1, "procedural": 2}}])
        cached = await engine.run_pass()
        await engine.handle_storage_change()
        return cached

    cached = asyncio.run(scenario())

    assert cached.to_add == []
    assert "adblocker-css-procedural" in registry.ids


def test_repeated_enabled_ruleset_still_converges(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)
    registry = InMemoryRegistry()
    engine = make_engine(
        rulesets_dir, registry, enabled=["ublock-filters", "ublock-filters", "easylist"],
    )

    async def scenario():
        return await engine.run_pass(), await engine.run_pass()

    first, second = asyncio.run(scenario())

    assert first.failed_adds == 0
    assert len(first.to_add) == len(set(first.to_add)) == 7
    assert sorted(registry.ids) == sorted(first.to_add)
    specific = registry.get("adblocker-css-specific")
    assert len(specific["js"]) == len(set(specific["js"]))
    assert not second.changed


def test_engines_share_the_process_guard_by_default(write_rulesets) -> None:
    rulesets_dir = write_rulesets(DETAILS, SCRIPTLETS, GENERIC)

    async def scenario():
        registry = SlowRegistry()
        busy_engine = make_engine(rulesets_dir, registry)
        other_engine = make_engine(rulesets_dir, InMemoryRegistry())
        first = asyncio.create_task(busy_engine.run_pass())
        await registry.entered.wait()
        second = await other_engine.run_pass()
        registry.release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.status == COMPLETED
    assert second.status == BUSY
    assert not PROCESS_GUARD.held
