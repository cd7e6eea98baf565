"""
registry.py - Injection registry adapters

The registry is the host-owned table of active content-script registrations.
The engine only needs three calls from it:

    list_registered()   current entries, in the host's wire format
    register(ds)        add directives; rejects ids that already exist
    unregister(ids)     remove by id; rejects ids that do not exist

Other extensions' code may register entries under other id prefixes; the
adapters keep those untouched like any other entry.

InMemoryRegistry mimics the host closely enough to drive the engine in tests
and from the command line, including handing file paths back without their
leading slash. JsonFileRegistry persists the same table to disk.
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Iterable, Sequence

import aiofiles
import aiofiles.os

from injectables.directives import Directive


class RegistryError(Exception):
    """A registry call was rejected."""


class RegistryAdapter:
    """Interface to the host registry. `supported` is False where the host has none."""

    supported: bool = True

    async def list_registered(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def register(self, directives: Sequence[Directive]) -> None:
        raise NotImplementedError

    async def unregister(self, ids: Sequence[str]) -> None:
        raise NotImplementedError


def _strip_leading_slash(entry: dict[str, Any]) -> dict[str, Any]:
    for key in ("js", "css"):
        if key in entry:
            entry[key] = [path.lstrip("/") for path in entry[key]]
    return entry


class InMemoryRegistry(RegistryAdapter):
    """
    Registry table held in a dict, keyed by id, in registration order.

    Calls are all-or-nothing: a rejected call changes nothing.
    """

    def __init__(self, entries: Iterable[dict[str, Any]] = ()):
        self._entries: dict[str, dict[str, Any]] = {}
        for entry in entries:
            self._entries[entry["id"]] = copy.deepcopy(entry)

    @property
    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, directive_id: str) -> dict[str, Any] | None:
        entry = self._entries.get(directive_id)
        return copy.deepcopy(entry) if entry is not None else None

    async def list_registered(self) -> list[dict[str, Any]]:
        return [_strip_leading_slash(copy.deepcopy(e)) for e in self._entries.values()]

    async def register(self, directives: Sequence[Directive]) -> None:
        ids = [d.id for d in directives]
        duplicates = sorted({i for i in ids if i in self._entries or ids.count(i) > 1})
        if duplicates:
            raise RegistryError(f"Duplicate script ID: {', '.join(duplicates)}")
        for directive in directives:
            self._entries[directive.id] = directive.to_dict()
        await self._changed()

    async def unregister(self, ids: Sequence[str]) -> None:
        missing = sorted({i for i in ids if i not in self._entries})
        if missing:
            raise RegistryError(f"Nonexistent script ID: {', '.join(missing)}")
        for directive_id in ids:
            del self._entries[directive_id]
        await self._changed()

    async def _changed(self) -> None:
        """Hook for subclasses that persist the table."""


class JsonFileRegistry(InMemoryRegistry):
    """InMemoryRegistry saved to a JSON file after every accepted change."""

    def __init__(self, path: str | Path, entries: Iterable[dict[str, Any]] = ()):
        super().__init__(entries)
        self.path = Path(path)

    @classmethod
    async def load(cls, path: str | Path) -> JsonFileRegistry:
        """
        Open a registry file; a missing file is an empty registry.

        Raises:
            RegistryError: If the file exists but is not a list of entries
        """
        path = Path(path)
        if not path.exists():
            return cls(path)
        async with aiofiles.open(path, encoding="utf-8") as f:
            text = await f.read()
        try:
            entries = json.loads(text) if text.strip() else []
        except json.JSONDecodeError as e:
            raise RegistryError(f"Unreadable registry file {path}: {e}") from e
        if not isinstance(entries, list) or not all(
            isinstance(entry, dict) and "id" in entry for entry in entries
        ):
            raise RegistryError(f"Registry file {path} is not a list of entries")
        return cls(path, entries)

    async def _changed(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(list(self._entries.values()), indent=2))
        await aiofiles.os.replace(temp_path, self.path)


class UnsupportedRegistry(RegistryAdapter):
    """Stand-in for hosts without a content-script registry."""

    supported = False

    async def list_registered(self) -> list[dict[str, Any]]:
        return []

    async def register(self, directives: Sequence[Directive]) -> None:
        raise RegistryError("Content-script registration is not available")

    async def unregister(self, ids: Sequence[str]) -> None:
        raise RegistryError("Content-script registration is not available")
