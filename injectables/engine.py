"""
engine.py - Diff-based reconciliation of injection directives

One pass:

    Idle -> Loading inputs -> Synthesizing -> Diffing -> Committing -> Idle

1. Load the enabled rulesets, generic overrides, scriptlet worlds, tier sets
   and the registry's current entries concurrently.
2. Build the desired directives (synthesizers.synthesize).
3. Diff desired against what is registered under our id prefix.
4. Unregister stale/changed ids, then register new/changed directives.

FAILURE MODEL:
    - Metadata loaders never raise, they fall back to empty values.
    - A failed registry read aborts the pass (no snapshot, no safe diff).
    - Failed register/unregister calls are counted and otherwise ignored; the
      next pass converges. There is no retry.

RE-ENTRANCY:
    A pass started while another is in flight returns at once with status
    "busy" and does nothing. It does not wait, so a change landing mid-pass is
    picked up by the next trigger, not by the skipped call.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from injectables.config import EngineConfig
from injectables.directives import Directive, is_same_directive, normalize_registered
from injectables.metadata import MetadataStore
from injectables.registry import RegistryAdapter
from injectables.synthesizers import synthesize

# Pass outcomes
COMPLETED = "completed"
BUSY = "busy"
UNSUPPORTED = "unsupported"
FAILED = "failed"


class ReentrancyGuard:
    """Single-slot lock without a wait queue: try_acquire() or go away."""

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


# Shared by every engine that is not handed its own guard
PROCESS_GUARD = ReentrancyGuard()


@dataclass
class ReconcileResult:
    """What one pass did."""
    status: str
    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)
    failed_adds: int = 0
    failed_removes: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (COMPLETED, BUSY)

    @property
    def changed(self) -> bool:
        return bool(self.to_add or self.to_remove)


def diff_directives(
    desired: Iterable[Directive],
    current: Iterable[Directive],
) -> tuple[list[Directive], list[str]]:
    """
    Work out which directives to add and which ids to remove.

    A desired directive missing from `current` is added. One that differs is
    removed and re-added under the same id. Identical ones are left alone.
    Whatever is left in `current` afterwards is stale and removed.

    Returns:
        (to_add, to_remove) with each id at most once in to_remove
    """
    before = {directive.id: directive for directive in current}
    to_add: list[Directive] = []
    to_remove: list[str] = []

    for directive in desired:
        registered = before.pop(directive.id, None)
        if registered is None:
            to_add.append(directive)
        elif not is_same_directive(registered, directive):
            to_remove.append(directive.id)
            to_add.append(directive)

    to_remove.extend(before)
    return to_add, list(dict.fromkeys(to_remove))


class ReconciliationEngine:
    """
    Keeps the registry's share of our directives in line with the inputs.

    Args:
        metadata: Source of rulesets, overrides, scriptlet worlds and tiers
        registry: Host registry adapter
        config: Namespace, resource paths and debug switch
        guard: Re-entrancy guard; defaults to the process-wide PROCESS_GUARD.
            Pass a private one to run independent engines side by side
    """

    def __init__(
        self,
        metadata: MetadataStore,
        registry: RegistryAdapter,
        config: EngineConfig | None = None,
        guard: ReentrancyGuard | None = None,
    ):
        self.metadata = metadata
        self.registry = registry
        self.config = config if config is not None else metadata.config
        self.guard = guard if guard is not None else PROCESS_GUARD

    async def reconcile(self) -> bool:
        """
        Run one pass.

        Returns:
            False if the host has no registry or the pass failed before
            committing, True otherwise (failed writes included)
        """
        return (await self.run_pass()).ok

    async def run_pass(self) -> ReconcileResult:
        if not self.registry.supported:
            return ReconcileResult(UNSUPPORTED)
        if not self.guard.try_acquire():
            self.config.log("reconciliation already in progress, skipping")
            return ReconcileResult(BUSY)
        try:
            return await self._run_pass()
        except Exception as e:
            self.config.log(f"reconciliation failed: {e!r}")
            return ReconcileResult(FAILED, error=str(e) or type(e).__name__)
        finally:
            self.guard.release()

    async def _run_pass(self) -> ReconcileResult:
        modes, rulesets, worlds, overrides, registered = await asyncio.gather(
            self.metadata.get_filtering_mode_sets(),
            self.metadata.get_enabled_descriptors(),
            self.metadata.get_scriptlet_world_maps(),
            self.metadata.get_generic_hostname_overrides(),
            self.registry.list_registered(),
        )
        current = self._owned(normalize_registered(registered))
        self.config.log(
            f"loaded {len(rulesets)} enabled rulesets, {len(current)} registered directives"
        )

        overlapping = modes.overlapping()
        if overlapping:
            self.config.log(f"hostnames in more than one tier: {', '.join(overlapping)}")

        if not rulesets:
            result = ReconcileResult(COMPLETED, to_remove=[d.id for d in current])
            await self._commit([], result)
            return result

        desired = synthesize(rulesets, overrides, worlds, modes, self.config)
        to_add, to_remove = diff_directives(desired, current)
        result = ReconcileResult(
            COMPLETED,
            to_add=[d.id for d in to_add],
            to_remove=to_remove,
        )
        await self._commit(to_add, result)
        return result

    async def unregister_all(self) -> ReconcileResult:
        """Remove every directive registered under our prefix."""
        if not self.registry.supported:
            return ReconcileResult(UNSUPPORTED)
        try:
            registered = await self.registry.list_registered()
        except Exception as e:
            self.config.log(f"registry read failed: {e!r}")
            return ReconcileResult(FAILED, error=str(e) or type(e).__name__)
        result = ReconcileResult(
            COMPLETED,
            to_remove=[d.id for d in self._owned(normalize_registered(registered))],
        )
        await self._commit([], result)
        return result

    async def handle_storage_change(self) -> bool:
        """Invalidate cached metadata, then reconcile."""
        self.metadata.cache.invalidate()
        return await self.reconcile()

    def _owned(self, directives: Iterable[Directive]) -> list[Directive]:
        return [d for d in directives if self.config.owns(d.id)]

    async def _commit(self, to_add: Sequence[Directive], result: ReconcileResult) -> None:
        if result.to_remove:
            self.config.log(f"unregistering {', '.join(result.to_remove)}")
            try:
                await self.registry.unregister(result.to_remove)
            except Exception as e:
                result.failed_removes = len(result.to_remove)
                self.config.log(f"unregister failed: {e!r}")
        if to_add:
            self.config.log(f"registering {', '.join(d.id for d in to_add)}")
            try:
                await self.registry.register(list(to_add))
            except Exception as e:
                result.failed_adds = len(to_add)
                self.config.log(f"register failed: {e!r}")
