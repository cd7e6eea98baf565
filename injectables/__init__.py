"""
injectables package - Content-Script Injection Reconciler

Modules:
    hostnames: Hostname set algebra and hostname normalization
    patterns: Hostname to match-pattern translation
    modes: Filtering-mode tiers and their JSON-backed store
    directives: Directive model, ids and registry wire format
    synthesizers: Per-category directive builders
    metadata: Ruleset metadata loading with caching
    registry: Injection registry adapters
    engine: Diff-based reconciliation pass
    sync: Command-line entry point
"""

__version__ = "1.0.0"
