"""
Environment Overrides Module - Build tool environment variable control

Mitigations influence the external build tool only through a small fixed set of
environment variables. Every override is tracked together with the value it
replaced so post-build cleanup can restore the "no override" baseline.
"""

import logging
import os
import threading
from typing import Dict, Iterable, MutableMapping, Optional

logger = logging.getLogger(__name__)

# Variables the guard is allowed to touch
MANAGED_VARIABLES = (
    "MSBuildNodeCount",
    "DOTNET_CLI_TELEMETRY_OPTOUT",
    "DOTNET_gcServer",
    "DOTNET_gcConcurrent",
    "DOTNET_gcRetainVM",
    "DOTNET_NOLOGO",
    "NUGET_XMLDOC_MODE",
    "MSBUILDDEBUGPATH",
)

_UNSET = object()


class EnvironmentOverrides:
    """Sets and restores the managed build environment variables."""

    def __init__(self, environ: Optional[MutableMapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self._baseline: Dict[str, object] = {}
        self._lock = threading.Lock()

    def set(self, name: str, value: Optional[str]):
        """Override a managed variable; None removes it."""
        if name not in MANAGED_VARIABLES:
            raise KeyError(f"{name} is not a managed build environment variable")

        with self._lock:
            if name not in self._baseline:
                self._baseline[name] = self.environ.get(name, _UNSET)
            if value is None:
                self.environ.pop(name, None)
            else:
                self.environ[name] = value
        logger.debug(f"Environment override {name}={value}")

    def set_many(self, values: Dict[str, Optional[str]]):
        for name, value in values.items():
            self.set(name, value)

    def get(self, name: str) -> Optional[str]:
        return self.environ.get(name)

    @property
    def overridden(self) -> Dict[str, Optional[str]]:
        """Current values of every variable overridden since the last restore."""
        with self._lock:
            return {name: self.environ.get(name) for name in self._baseline}

    def restore(self) -> int:
        """Put every overridden variable back to its pre-override value."""
        with self._lock:
            restored = len(self._baseline)
            for name, original in self._baseline.items():
                self._put_back(name, original)
            self._baseline.clear()
        if restored:
            logger.info(f"Restored {restored} build environment variable(s) to baseline")
        return restored

    def reset(self, names: Iterable[str]) -> int:
        """Restore only the named variables; the rest keep their overrides."""
        reset = 0
        with self._lock:
            for name in names:
                if name in self._baseline:
                    self._put_back(name, self._baseline.pop(name))
                    reset += 1
        if reset:
            logger.debug(f"Reset {reset} build environment variable(s) to baseline")
        return reset

    def _put_back(self, name: str, original: object):
        if original is _UNSET:
            self.environ.pop(name, None)
        else:
            self.environ[name] = original
