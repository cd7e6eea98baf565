"""
config.py - Engine configuration and gated debug output

Tunables live here as module constants. Anything that varies per engine
instance is carried by EngineConfig.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import Final


# ============================================================================
# DEFAULTS
# ============================================================================

DEFAULT_TAG: Final = "adblocker"
DEFAULT_RESOURCE_ROOT: Final = "/adblocker"

# Metadata fetch settings
DEFAULT_TIMEOUT: Final = 10
DEFAULT_RETRIES: Final = 2
DEFAULT_BACKOFF: Final = 0.5

# Metadata files, relative to the rulesets location
RULESET_DETAILS_FILE: Final = "ruleset-details.json"
SCRIPTLET_DETAILS_FILE: Final = "scriptlet-details.json"
GENERIC_DETAILS_FILE: Final = "generic-details.json"

# Environment overrides
ENV_DEBUG: Final = "INJECTABLES_DEBUG"
ENV_TAG: Final = "INJECTABLES_TAG"
ENV_RESOURCE_ROOT: Final = "INJECTABLES_RESOURCE_ROOT"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass
class EngineConfig:
    """
    Per-engine settings.

    Attributes:
        tag: Namespace prefix for every directive id this engine owns
        resource_root: Extension path under which script/style files live
        verbose: Runtime switch for debug output on stderr
    """
    tag: str = DEFAULT_TAG
    resource_root: str = DEFAULT_RESOURCE_ROOT
    verbose: bool = False

    @property
    def id_prefix(self) -> str:
        return f"{self.tag}-"

    def owns(self, directive_id: str) -> bool:
        """True if the id belongs to this engine's namespace."""
        return directive_id.startswith(self.id_prefix)

    def resource(self, relative: str) -> str:
        """Absolute extension path for a file under the resource root."""
        root = "/" + self.resource_root.strip("/")
        if root == "/":
            return f"/{relative.lstrip('/')}"
        return f"{root}/{relative.lstrip('/')}"

    def log(self, message: str) -> None:
        if self.verbose:
            print(f"[{self.tag}] {message}", file=sys.stderr)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from INJECTABLES_* environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            tag=env.get(ENV_TAG) or DEFAULT_TAG,
            resource_root=env.get(ENV_RESOURCE_ROOT) or DEFAULT_RESOURCE_ROOT,
            verbose=env.get(ENV_DEBUG, "").strip().lower() in _TRUTHY,
        )
