from __future__ import annotations

import json
from pathlib import Path

import pytest

from injectables.config import EngineConfig


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(tag="adblocker", resource_root="/adblocker")


@pytest.fixture
def write_rulesets(tmp_path: Path):
    """Write the three metadata files into tmp_path/rulesets and return the directory."""

    def _write(details=None, scriptlets=None, generic=None) -> Path:
        directory = tmp_path / "rulesets"
        directory.mkdir(exist_ok=True)
        for name, data in (
            ("ruleset-details.json", details),
            ("scriptlet-details.json", scriptlets),
            ("generic-details.json", generic),
        ):
            if data is not None:
                (directory / name).write_text(json.dumps(data), encoding="utf-8")
        return directory

    return _write
