#!/usr/bin/env python3
"""
sync.py - Run one reconciliation pass from the command line

Loads ruleset metadata from a directory or URL, applies any requested tier
changes, then reconciles a JSON-file registry against the result.

Usage:
    python -m injectables.sync --rulesets rulesets/ --registry registry.json \\
        --modes modes.json --enable easylist --enable ublock-filters \\
        --set-mode example.com=complete --default-mode optimal

    python -m injectables.sync --rulesets rulesets/ --registry registry.json --disable
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from injectables.config import DEFAULT_RESOURCE_ROOT, DEFAULT_TAG, ENV_DEBUG, EngineConfig
from injectables.engine import ReconcileResult, ReconciliationEngine
from injectables.metadata import MetadataStore, source_from_location
from injectables.modes import FilteringModeStore, Tier
from injectables.registry import JsonFileRegistry, RegistryError


def parse_mode_assignment(value: str) -> tuple[str, Tier]:
    """
    Parse HOST=TIER.

    Example:
        >>> parse_mode_assignment("example.com=complete")
        ('example.com', <Tier.COMPLETE: 3>)
    """
    hostname, sep, tier = value.rpartition("=")
    if not sep or not hostname:
        raise argparse.ArgumentTypeError(f"expected HOST=TIER, got {value!r}")
    try:
        return hostname, Tier.parse(tier)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def parse_tier(value: str) -> Tier:
    try:
        return Tier.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile content-script registrations")
    parser.add_argument("--rulesets", required=True, help="Rulesets metadata directory or base URL")
    parser.add_argument("--registry", required=True, help="Registry JSON file")
    parser.add_argument("--modes", help="Filtering-mode JSON file (defaults: complete everywhere)")
    parser.add_argument("--enable", action="append", default=[], metavar="RULESET",
                        help="Enabled ruleset id (repeatable, order kept)")
    parser.add_argument("--set-mode", action="append", default=[], type=parse_mode_assignment,
                        metavar="HOST=TIER", help="Move a hostname to a tier (repeatable)")
    parser.add_argument("--default-mode", type=parse_tier, metavar="TIER",
                        help="Tier for hostnames listed nowhere else")
    parser.add_argument("--disable", action="store_true",
                        help="Unregister every directive we own instead of reconciling")
    parser.add_argument("--tag", default=DEFAULT_TAG, help="Directive id prefix")
    parser.add_argument("--resource-root", default=DEFAULT_RESOURCE_ROOT,
                        help="Extension path of script/style files")
    parser.add_argument("--verbose", action="store_true",
                        help=f"Debug output on stderr (also ${ENV_DEBUG}=1)")
    return parser


async def run(args: argparse.Namespace) -> ReconcileResult:
    config = EngineConfig.from_env()
    config.tag = args.tag
    config.resource_root = args.resource_root
    config.verbose = config.verbose or args.verbose

    modes = FilteringModeStore(args.modes)
    metadata = MetadataStore(
        source_from_location(args.rulesets),
        modes=modes,
        enabled_rulesets=args.enable,
        config=config,
    )
    registry = await JsonFileRegistry.load(args.registry)
    engine = ReconciliationEngine(metadata, registry, config)

    if args.disable:
        return await engine.unregister_all()

    for hostname, tier in args.set_mode:
        await modes.set_filtering_mode(hostname, tier)
    if args.default_mode is not None:
        await modes.set_default_filtering_mode(args.default_mode)

    return await engine.run_pass()


def print_summary(result: ReconcileResult) -> None:
    print(f"📋 Status: {result.status}")
    print(f"   Added:   {len(result.to_add):>4} (failed: {result.failed_adds})")
    for directive_id in result.to_add:
        print(f"     + {directive_id}")
    print(f"   Removed: {len(result.to_remove):>4} (failed: {result.failed_removes})")
    for directive_id in result.to_remove:
        print(f"     - {directive_id}")
    if not result.changed:
        print("   Registry already up to date")
    if result.error:
        print(f"   Error: {result.error}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        result = asyncio.run(run(args))
    except (RegistryError, ValueError, OSError) as e:
        print(f"❌ ERROR: {e}", file=sys.stderr)
        return 1

    print_summary(result)
    if not result.ok:
        return 1
    if result.failed_adds or result.failed_removes:
        print(f"⚠️  {result.failed_adds + result.failed_removes} registry writes failed")
    else:
        print("✅ Reconciliation complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
