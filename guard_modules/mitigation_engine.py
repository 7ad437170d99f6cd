"""
Mitigation Engine Module - Graduated corrective actions

Maps detected threats to concrete, idempotent actions and applies them in
severity order. Actions are best-effort: a failing action is logged and the
remaining list still runs. Also applies the cumulative per-protection-level
environment baselines.
"""

import logging
import time
from typing import Callable, Dict, Any, List

from .build_cleanup import BuildCleaner
from .environment import EnvironmentOverrides
from .errors import MitigationFailure
from .guard_config import GuardConfig
from .models import ProtectionLevel, Threat, ThreatCategory, ThreatSeverity

logger = logging.getLogger(__name__)

# Environment baseline added by each protection level; levels are cumulative
PROTECTION_BASELINES: Dict[ProtectionLevel, Dict[str, str]] = {
    ProtectionLevel.MINIMAL: {"DOTNET_CLI_TELEMETRY_OPTOUT": "1"},
    ProtectionLevel.STANDARD: {"MSBuildNodeCount": "2"},
    ProtectionLevel.AGGRESSIVE: {"MSBuildNodeCount": "1", "DOTNET_gcServer": "0"},
    ProtectionLevel.EMERGENCY: {"DOTNET_gcConcurrent": "1", "DOTNET_gcRetainVM": "1"},
}


class MitigationEngine:
    """Applies corrective actions for threats and protection levels."""

    def __init__(self, config: GuardConfig, overrides: EnvironmentOverrides, cleaner: BuildCleaner,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.overrides = overrides
        self.cleaner = cleaner
        self.sleep = sleep

        # Mode flags consulted by callers (e.g. network code extending timeouts)
        self.flags: Dict[str, Any] = {
            "low_memory_mode": False,
            "reduced_parallelism": False,
            "reduced_caching": False,
            "offline_mode": False,
            "network_timeout_multiplier": 1,
        }
        self.active_mitigations: List[str] = []

        self._actions: Dict[str, Callable[[], Any]] = {
            "force_gc": self._force_gc,
            "low_memory_mode": self._enable_low_memory_mode,
            "reduce_parallelism": self._reduce_parallelism,
            "cpu_backoff": lambda: self.sleep(self.config.cpu_backoff_seconds),
            "purge_stale_temp": self.cleaner.purge_stale_temp_files,
            "reduce_caching": self._reduce_caching,
            "offline_mode": self._enable_offline_mode,
            "extend_timeouts": self._extend_timeouts,
            "io_delay": lambda: self.sleep(self.config.io_delay_seconds),
            "kill_orphans": self.cleaner.kill_orphaned_build_processes,
            "clear_tool_temp": self.cleaner.clear_tool_temp,
        }

        self.help_data = {
            "name": "Mitigation Engine",
            "description": "Maps threats to idempotent corrective actions applied in severity order",
            "version": "1.0.0",
            "features": [
                "Severity-ordered dispatch by category and severity",
                "Each action runs at most once per apply call",
                "Failed actions are logged and skipped",
                "Cumulative environment baselines per protection level"
            ],
            "actions": sorted(self._actions)
        }

    def actions_for(self, threat: Threat) -> List[str]:
        """Action identifiers for one threat, in execution order."""
        category = threat.category
        severity = threat.severity

        if category == ThreatCategory.MEMORY:
            if severity >= ThreatSeverity.HIGH:
                return ["force_gc", "low_memory_mode"]
            if severity == ThreatSeverity.MEDIUM:
                return ["low_memory_mode"]
        elif category == ThreatCategory.CPU:
            if severity >= ThreatSeverity.HIGH:
                return ["reduce_parallelism", "cpu_backoff"]
        elif category == ThreatCategory.STORAGE:
            if severity >= ThreatSeverity.HIGH:
                return ["purge_stale_temp", "reduce_caching"]
        elif category == ThreatCategory.NETWORK:
            return ["offline_mode", "extend_timeouts"]
        elif category == ThreatCategory.SECURITY:
            return ["io_delay"]
        elif category in (ThreatCategory.SYSTEM_STABILITY, ThreatCategory.DEV_ENVIRONMENT):
            if severity >= ThreatSeverity.HIGH:
                return ["kill_orphans", "clear_tool_temp"]
            if threat.detector == "build_tool_sprawl":
                return ["kill_orphans"]
        elif category == ThreatCategory.FILE_SYSTEM:
            if threat.detector == "locked_build_files":
                return ["kill_orphans"]
        return []

    def apply(self, threats: List[Threat]) -> List[str]:
        """Mitigate threats, most severe first. Returns the actions performed."""
        if not threats:
            return []
        if not self.config.is_module_enabled("mitigation_engine"):
            logger.info(f"Mitigation engine disabled - {len(threats)} threat(s) left unmitigated")
            return []

        logger.info(f"Applying mitigations for {len(threats)} detected threat(s)...")
        attempted = set()
        performed: List[str] = []
        # sorted() is stable, so ties keep detection order
        for threat in sorted(threats, key=lambda t: t.severity, reverse=True):
            logger.info(f"Mitigating {threat.severity.name} threat in {threat.category.value}: "
                        f"{threat.description}")
            for action in self.actions_for(threat):
                if action in attempted:
                    continue
                attempted.add(action)
                try:
                    self._run_action(action)
                    performed.append(action)
                except MitigationFailure as e:
                    logger.warning(f"Failed to apply mitigation for {threat.category.value}: {e}")

        logger.info(f"Threat mitigations applied: {', '.join(performed) or 'none required'}")
        return performed

    def apply_protection_level(self, level: ProtectionLevel) -> List[str]:
        """Apply every baseline from MINIMAL up to level, in order.

        Variables set only by baselines above level go back to their
        pre-override values.
        """
        applied = []
        for baseline_level in sorted(PROTECTION_BASELINES):
            if baseline_level > level:
                break
            try:
                self.overrides.set_many(PROTECTION_BASELINES[baseline_level])
            except Exception as e:
                logger.warning(f"Failed to apply {baseline_level.name} protections: {e}")
                continue
            applied.append(f"baseline:{baseline_level.name}")

        # Stepping down drops what only the higher baselines set
        kept = {name for baseline_level, values in PROTECTION_BASELINES.items()
                if baseline_level <= level for name in values}
        above = {name for baseline_level, values in PROTECTION_BASELINES.items()
                 if baseline_level > level for name in values}
        self.overrides.reset(sorted(above - kept))

        self._record(*applied)
        logger.info(f"Protection baselines applied up to {level.name}")
        return applied

    def _run_action(self, action: str):
        try:
            self._actions[action]()
        except Exception as e:
            raise MitigationFailure(action, str(e)) from e
        self._record(action)

    def _record(self, *names: str):
        for name in names:
            if name not in self.active_mitigations:
                self.active_mitigations.append(name)

    # Actions

    def _force_gc(self):
        collected = self.cleaner.collect_garbage()
        logger.info(f"Forced garbage collection reclaimed {collected} objects")

    def _enable_low_memory_mode(self):
        self.flags["low_memory_mode"] = True
        self.overrides.set_many({"DOTNET_gcServer": "0", "DOTNET_gcConcurrent": "1"})
        logger.info("Low memory mode activated")

    def _reduce_parallelism(self):
        self.flags["reduced_parallelism"] = True
        self.overrides.set("MSBuildNodeCount", "1")
        logger.info("Build parallelism reduced to prevent pipe breaks")

    def _reduce_caching(self):
        self.flags["reduced_caching"] = True
        self.overrides.set("DOTNET_CLI_TELEMETRY_OPTOUT", "1")

    def _enable_offline_mode(self):
        self.flags["offline_mode"] = True
        self.overrides.set_many({"DOTNET_NOLOGO": "1", "NUGET_XMLDOC_MODE": "skip"})

    def _extend_timeouts(self):
        self.flags["network_timeout_multiplier"] = 3
