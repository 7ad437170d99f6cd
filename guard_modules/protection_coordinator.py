"""
Protection Coordinator Module - Environment protection facade

Owns the MonitoringSession for one application: lock-guarded idempotent
initialization and shutdown, health checks, the emergency protocol and the
build lifecycle hooks (prepare, protected build, post-build cleanup). No
exception escapes a public method; failures degrade to safe return values.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Any, List, MutableMapping, Optional, Union

from .build_cleanup import BuildCleaner, force_garbage_collection
from .build_guard import BuildGuard, CommandRunner, run_command
from .continuous_monitor import ContinuousMonitor
from .environment import EnvironmentOverrides
from .errors import InitializationFailure
from .guard_config import GuardConfig
from .health_aggregator import HealthAggregator
from .mitigation_engine import MitigationEngine
from .models import (
    HealthLevel, HealthReport, MonitoringSession, ProtectionLevel, Threat, ThreatSeverity
)
from .process_inspector import ProcessInspector, PsutilProcessInspector
from .system_probe import PsutilSystemProbe, SystemProbe
from .threat_scanner import ThreatScanner

logger = logging.getLogger(__name__)

CONSERVATIVE_ENVIRONMENT = {
    "MSBuildNodeCount": "1",
    "DOTNET_gcServer": "0",
    "DOTNET_gcConcurrent": "1",
    "DOTNET_CLI_TELEMETRY_OPTOUT": "1",
}

OFFLINE_ENVIRONMENT = {
    "DOTNET_NOLOGO": "1",
    "NUGET_XMLDOC_MODE": "skip",
}


class ProtectionCoordinator:
    """Entry point for environment protection and build lifecycle hooks."""

    def __init__(self, config: GuardConfig, scanner: ThreatScanner, engine: MitigationEngine,
                 aggregator: HealthAggregator, guard: BuildGuard, cleaner: BuildCleaner,
                 overrides: EnvironmentOverrides, inspector: ProcessInspector,
                 sleep: Callable[[float], None] = time.sleep,
                 monitor_factory: Optional[Callable[..., ContinuousMonitor]] = None):
        self.config = config
        self.scanner = scanner
        self.engine = engine
        self.aggregator = aggregator
        self.guard = guard
        self.cleaner = cleaner
        self.overrides = overrides
        self.inspector = inspector
        self.sleep = sleep
        self.monitor_factory = monitor_factory or ContinuousMonitor
        self.session = MonitoringSession()

    # Lifecycle

    def initialize(self, level: Union[ProtectionLevel, str] = ProtectionLevel.STANDARD) -> bool:
        """Initialize protection once; concurrent and repeated calls are no-ops.

        level may also be a level name such as "aggressive". An unknown level
        falls back to minimal protection like any other initialization failure.
        """
        with self.session.lock:
            if self.session.initialized:
                return True

            try:
                self._initialize_full(level)
            except InitializationFailure as e:
                logger.warning(f"Environment protection initialization warning: {e}")
                self._initialize_minimal_protection()
            return self.session.initialized

    def _initialize_full(self, level: Union[ProtectionLevel, str]):
        try:
            level = _coerce_level(level)
            logger.info(f"Initializing environment protection (level: {level.name})...")
            self._initialize_protection_systems(level)
            threats = self._initial_threat_assessment()
            self.engine.apply(threats)
            self.engine.apply_protection_level(level)
            self._start_monitoring(level)
        except Exception as e:
            raise InitializationFailure(str(e)) from e

        self.session.initialized = True
        self.session.last_full_scan = datetime.now()
        self._sync_mitigations()
        logger.info(f"Environment protection initialized with "
                    f"{len(self.session.active_protections)} active protections: "
                    f"{', '.join(self.session.active_protections)}")

    def shutdown(self):
        """Stop monitoring and restore the build environment. Idempotent."""
        with self.session.lock:
            try:
                if self.session.monitor is not None:
                    self.session.monitor.stop()
                    self.session.monitor = None
                self.overrides.restore()
            except Exception as e:
                logger.error(f"Environment protection shutdown error: {e}")
            finally:
                self.session.initialized = False
                self.session.active_protections = []
        logger.info("Environment protection shut down")

    def _initialize_protection_systems(self, level: ProtectionLevel):
        protections = ["EnvironmentBaseline"]
        if level >= ProtectionLevel.STANDARD:
            protections.append("ThreatDetection")
        if level >= ProtectionLevel.AGGRESSIVE:
            protections.append("AggressiveMonitoring")
        if level == ProtectionLevel.EMERGENCY:
            self.apply_emergency_protections()
            protections.append("EmergencyProtections")
        self.session.protection_level = level
        self.session.active_protections = protections

    def _initial_threat_assessment(self) -> List[Threat]:
        if self.session.protection_level < ProtectionLevel.STANDARD:
            return []
        threats = self.scanner.scan() + self.scanner.scan_startup_conflicts()
        logger.info(f"Initial threat assessment: {len(threats)} threats detected")

        critical = sum(1 for t in threats if t.severity == ThreatSeverity.CRITICAL)
        high = sum(1 for t in threats if t.severity == ThreatSeverity.HIGH)
        if critical > 0 or high > 2:
            logger.warning(f"HIGH RISK ENVIRONMENT: {critical} critical, {high} high threats")
        return threats

    def _start_monitoring(self, level: ProtectionLevel):
        if not self.config.is_module_enabled("continuous_monitor"):
            return
        interval = self.config.monitor_interval_for(level.name)
        if interval is None:
            return
        if self.session.monitor is None:
            self.session.monitor = self.monitor_factory(
                self.aggregator, self.engine,
                interval=interval,
                on_critical=self._on_monitor_critical,
                on_report=self._on_monitor_report,
                critical_backoff_factor=self.config.critical_backoff_factor,
                error_backoff_seconds=self.config.error_backoff_seconds
            )
        self.session.monitor.start()
        self.session.active_protections.append("ContinuousMonitoring")

    def _initialize_minimal_protection(self):
        try:
            if self.session.monitor is not None:
                self.session.monitor.stop()
                self.session.monitor = None
            self.engine.apply_protection_level(ProtectionLevel.MINIMAL)
            self.session.protection_level = ProtectionLevel.MINIMAL
            self.session.active_protections = ["MinimalProtection"]
            self.session.initialized = True
            self._sync_mitigations()
        except Exception as e:
            logger.error(f"Even minimal protection failed: {e}")

    def _on_monitor_report(self, report: HealthReport):
        """Adapt protection level and cadence to the latest report."""
        if not self.session.initialized:
            return
        self.session.last_report = report
        recommended = self.aggregator.recommend_protection_level(report)
        if recommended != self.session.protection_level:
            logger.info(f"Adjusting protection level: {self.session.protection_level.name} -> "
                        f"{recommended.name}")
            self._change_protection_level(recommended)
        self._sync_mitigations()

    def _on_monitor_critical(self):
        if not self.session.initialized:
            logger.info("Protection is shut down - skipping emergency protections")
            return
        self.apply_emergency_protections()

    def _change_protection_level(self, level: ProtectionLevel):
        """Switch level, apply its environment baseline and its monitoring cadence."""
        self.session.protection_level = level
        self.engine.apply_protection_level(level)
        interval = self.config.monitor_interval_for(level.name)
        if interval is not None and self.session.monitor is not None:
            self.session.monitor.set_interval(interval)

    def _sync_mitigations(self):
        self.session.active_mitigations = list(self.engine.active_mitigations)

    # Health

    def perform_health_check(self) -> HealthReport:
        """Run a full health assessment and remember it as the session's last report."""
        logger.info("Performing comprehensive environment health check...")
        try:
            report = self.aggregator.assess()
        except Exception as e:
            logger.error(f"Health check error: {e}")
            report = HealthReport(timestamp=datetime.now(), error_message=str(e))
        self.session.last_report = report
        return report

    def force_environment_scan(self) -> List[Threat]:
        """Immediate scan followed by mitigation of everything found."""
        try:
            threats = self.scanner.scan()
            self.engine.apply(threats)
            self.session.last_full_scan = datetime.now()
            self._sync_mitigations()
            return threats
        except Exception as e:
            logger.error(f"Forced environment scan failed: {e}")
            return []

    def apply_emergency_protections(self):
        """Maximum protection for critical environments."""
        logger.warning("EMERGENCY: Applying emergency environment protections!")
        steps = [
            ("garbage collection", self.cleaner.collect_garbage),
            ("orphaned process cleanup", self.cleaner.kill_orphaned_build_processes),
            ("environment cleanup", self.cleaner.force_environment_cleanup),
            ("build artifact cleanup",
             lambda: self.cleaner.clean_build_artifacts(self.config.project_path, recursive=False)),
            ("conservative environment", lambda: self.overrides.set_many(CONSERVATIVE_ENVIRONMENT)),
            ("offline mode", lambda: self.overrides.set_many(OFFLINE_ENVIRONMENT)),
            ("system load reduction", self.inspector.lower_own_priority),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(f"Emergency protection error ({name}): {e}")

        try:
            self._change_protection_level(ProtectionLevel.EMERGENCY)
        except Exception as e:
            self.session.protection_level = ProtectionLevel.EMERGENCY
            logger.error(f"Emergency protection error (protection level): {e}")
        if "EmergencyProtections" not in self.session.active_protections:
            self.session.active_protections.append("EmergencyProtections")
        logger.info("Emergency protections applied")

    # Build lifecycle

    def prepare_for_build(self, target: str) -> bool:
        """Get the environment ready for a build. False means do not build."""
        logger.info(f"Preparing environment for build of {target}...")
        try:
            health = self.perform_health_check()

            if health.overall == HealthLevel.CRITICAL:
                logger.warning("Critical environment health - applying emergency measures")
                self.apply_emergency_protections()
                self.sleep(self.config.settle_seconds)

                health = self.perform_health_check()
                if health.overall == HealthLevel.CRITICAL:
                    logger.error("Environment still critical - build not recommended")
                    return False

            self._apply_build_specific_protections(health.overall)
            self._clean_build_environment()

            self.cleaner.collect_garbage()
            self.sleep(self.config.optimize_pause_seconds)

            logger.info("Environment prepared for build")
            return True
        except Exception as e:
            logger.error(f"Build preparation error: {e}")
            return False

    def _apply_build_specific_protections(self, health: HealthLevel):
        if health >= HealthLevel.DEGRADED:
            self.overrides.set_many({"MSBuildNodeCount": "1", "DOTNET_CLI_TELEMETRY_OPTOUT": "1"})
        else:
            self.overrides.set("DOTNET_CLI_TELEMETRY_OPTOUT", "1")

    def _clean_build_environment(self):
        try:
            self.cleaner.kill_orphaned_build_processes()
            self.cleaner.clear_tool_temp()
        except Exception as e:
            logger.warning(f"Build environment cleanup error: {e}")

    def run_protected_build(self, target: str, max_attempts: Optional[int] = None) -> bool:
        """Prepare, run the resilient build, and always clean up afterwards."""
        try:
            if not self.prepare_for_build(target):
                return False
            return self.guard.execute_resilient_build(target, max_attempts)
        except Exception as e:
            logger.error(f"Protected build error: {e}")
            return False
        finally:
            self.perform_post_build_cleanup()

    def perform_post_build_cleanup(self):
        """Kill orphaned tools, clear temp artifacts and restore environment overrides."""
        logger.info("Performing post-build cleanup...")
        steps = [
            self.cleaner.kill_orphaned_build_processes,
            self.cleaner.clear_tool_temp,
            self.overrides.restore,
            self.cleaner.collect_garbage,
        ]
        for step in steps:
            try:
                step()
            except Exception as e:
                logger.warning(f"Post-build cleanup error: {e}")
        logger.info("Post-build cleanup completed")

    # Reporting

    def get_threat_summary(self) -> Dict[str, Any]:
        try:
            return self.scanner.get_threat_summary()
        except Exception as e:
            logger.error(f"Threat summary failed: {e}")
            return {"error": str(e)}

    def get_status(self, include_health: bool = True) -> Dict[str, Any]:
        """Session status, plus a fresh health check when initialized."""
        status = self.session.to_dict()
        status["environment_overrides"] = self.overrides.overridden
        status["flags"] = dict(self.engine.flags)
        if include_health and self.session.initialized:
            report = self.perform_health_check()
            status["overall_health"] = report.overall.name
            status["detected_threats"] = len(report.threats)
        return status


def _coerce_level(level: Union[ProtectionLevel, str]) -> ProtectionLevel:
    if isinstance(level, str):
        return ProtectionLevel.parse(level)
    return ProtectionLevel(level)

def build_coordinator(config: GuardConfig,
                      probe: Optional[SystemProbe] = None,
                      inspector: Optional[ProcessInspector] = None,
                      environ: Optional[MutableMapping[str, str]] = None,
                      runner: CommandRunner = run_command,
                      sleep: Callable[[float], None] = time.sleep,
                      temp_dir: Optional[str] = None,
                      collect_garbage: Callable[[], int] = force_garbage_collection) -> ProtectionCoordinator:
    """Wire every component around one config. Defaults talk to the real host."""
    probe = probe or PsutilSystemProbe()
    inspector = inspector or PsutilProcessInspector()
    overrides = EnvironmentOverrides(environ)
    cleaner = BuildCleaner(config, inspector, overrides, temp_dir=temp_dir, collect_garbage=collect_garbage)
    scanner = ThreatScanner(config, probe, inspector)
    engine = MitigationEngine(config, overrides, cleaner, sleep=sleep)
    aggregator = HealthAggregator(config, probe, inspector, scanner)
    guard = BuildGuard(config, cleaner, runner=runner, sleep=sleep)
    return ProtectionCoordinator(config, scanner, engine, aggregator, guard, cleaner, overrides, inspector,
                                 sleep=sleep)
