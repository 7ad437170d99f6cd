"""
Threat Scanner Module - Multi-category environment threat detection

Runs independent detectors against the host and build toolchain and returns a
fresh list of threats on every call. A detector that fails is reported as its
own Low severity "detection error" threat instead of aborting the scan.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional, Tuple

from .guard_config import GuardConfig
from .models import Threat, ThreatCategory, ThreatSeverity
from .process_inspector import ProcessInspector
from .system_probe import SystemProbe

logger = logging.getLogger(__name__)

Detector = Callable[[], List[Threat]]


class ThreatScanner:
    """Stateless probe that produces a snapshot of adverse conditions."""

    def __init__(self, config: GuardConfig, probe: SystemProbe, inspector: ProcessInspector,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config
        self.probe = probe
        self.inspector = inspector
        self.clock = clock

        self.help_data = {
            "name": "Threat Scanner",
            "description": "Detects memory, CPU, storage, network, security, stability, "
                           "file system and dev-environment threats",
            "version": "1.0.0",
            "features": [
                "Eight independent detector categories",
                "Detector failures become Low severity detection_error threats",
                "Fresh snapshot on every scan, nothing cached"
            ],
            "configuration": {
                "memory_critical_mb": config.memory_critical_mb,
                "memory_warning_mb": config.memory_warning_mb,
                "cpu_high_percent": config.cpu_high_percent,
                "cpu_warning_percent": config.cpu_warning_percent,
                "max_build_tool_processes": config.max_build_tool_processes
            },
            "output_format": {
                "category": "Threat category name",
                "severity": "NONE, LOW, MEDIUM, HIGH or CRITICAL",
                "detector": "Identifier of the probe that produced the threat"
            }
        }

    def scan(self) -> List[Threat]:
        """Run every detector and concatenate their threats."""
        threats: List[Threat] = []
        for category, detector in self._detectors():
            threats.extend(self._run_detector(category, detector))
        logger.debug(f"Threat scan produced {len(threats)} threat(s)")
        return threats

    def scan_startup_conflicts(self) -> List[Threat]:
        """Detect applications that commonly interfere with builds; run once at startup."""
        return self._run_detector(ThreatCategory.DEV_ENVIRONMENT, self.detect_conflicting_applications)

    def _detectors(self) -> List[Tuple[ThreatCategory, Detector]]:
        return [
            (ThreatCategory.MEMORY, self.detect_memory),
            (ThreatCategory.CPU, self.detect_cpu),
            (ThreatCategory.STORAGE, self.detect_storage),
            (ThreatCategory.NETWORK, self.detect_network),
            (ThreatCategory.SECURITY, self.detect_security),
            (ThreatCategory.SYSTEM_STABILITY, self.detect_system_stability),
            (ThreatCategory.FILE_SYSTEM, self.detect_file_system),
            (ThreatCategory.DEV_ENVIRONMENT, self.detect_dev_environment),
        ]

    def _run_detector(self, category: ThreatCategory, detector: Detector) -> List[Threat]:
        try:
            return list(detector())
        except Exception as e:
            logger.warning(f"{category.value} detection failed: {e}")
            return [self._threat(
                category,
                f"{category.value} monitoring error: {e}",
                ThreatSeverity.LOW,
                "Continue with reduced monitoring",
                "detection_error"
            )]

    def _threat(self, category: ThreatCategory, description: str, severity: ThreatSeverity,
                mitigation: str, detector: str) -> Threat:
        return Threat(
            category=category,
            description=description,
            severity=severity,
            detected_at=self.clock(),
            mitigation=mitigation,
            detector=detector
        )

    # Detectors

    def detect_memory(self) -> List[Threat]:
        available = self.probe.available_memory_mb()
        if available < self.config.memory_critical_mb:
            return [self._threat(ThreatCategory.MEMORY,
                                 f"Critical memory shortage: {available:.0f}MB available",
                                 ThreatSeverity.CRITICAL,
                                 "Force GC, reduce memory usage", "low_memory")]
        if available < self.config.memory_warning_mb:
            return [self._threat(ThreatCategory.MEMORY,
                                 f"Memory pressure detected: {available:.0f}MB available",
                                 ThreatSeverity.MEDIUM,
                                 "Enable low memory mode", "memory_pressure")]
        return []

    def detect_cpu(self) -> List[Threat]:
        usage = self.probe.cpu_usage_percent(self.config.cpu_sample_seconds)
        if usage > self.config.cpu_high_percent:
            return [self._threat(ThreatCategory.CPU, f"CPU saturation: {usage:.1f}% usage",
                                 ThreatSeverity.HIGH,
                                 "Reduce thread count, delay operations", "cpu_saturation")]
        if usage > self.config.cpu_warning_percent:
            return [self._threat(ThreatCategory.CPU, f"High CPU usage: {usage:.1f}%",
                                 ThreatSeverity.MEDIUM,
                                 "Defer CPU-intensive work", "cpu_pressure")]
        return []

    def detect_storage(self) -> List[Threat]:
        free_gb = self.probe.system_free_disk_gb()
        if free_gb < self.config.disk_critical_gb:
            return [self._threat(ThreatCategory.STORAGE,
                                 f"Critical disk space: {free_gb:.2f}GB free on system volume",
                                 ThreatSeverity.CRITICAL,
                                 "Clean temp files, reduce caching", "low_disk")]
        return []

    def detect_network(self) -> List[Threat]:
        active = [ni for ni in self.probe.network_interfaces() if ni.is_up and not ni.is_loopback]
        if not active:
            return [self._threat(ThreatCategory.NETWORK, "No network connectivity detected",
                                 ThreatSeverity.MEDIUM,
                                 "Enable offline mode, cache data", "no_network")]

        threats = []
        for ni in active:
            # A speed of 0 means the OS did not report one
            if 0 < ni.speed_mbps < self.config.min_link_speed_mbps:
                threats.append(self._threat(
                    ThreatCategory.NETWORK,
                    f"Slow network interface: {ni.name} at {ni.speed_mbps:.1f} Mbps",
                    ThreatSeverity.LOW,
                    "Reduce network operations, increase timeouts", "slow_network"))
        return threats

    def detect_security(self) -> List[Threat]:
        threats = []
        if not self.probe.is_elevated():
            threats.append(self._threat(ThreatCategory.SECURITY,
                                        "Running without administrator privileges",
                                        ThreatSeverity.LOW,
                                        "Limit file system operations, use user directories",
                                        "not_elevated"))

        for proc in self.inspector.find(self.config.antivirus_processes):
            if proc.working_set_mb > self.config.antivirus_working_set_mb:
                threats.append(self._threat(ThreatCategory.SECURITY,
                                            f"Active antivirus scanning detected: {proc.name}",
                                            ThreatSeverity.MEDIUM,
                                            "Add exclusions, delay file operations",
                                            "antivirus_scanning"))

        if self.probe.realtime_protection_enabled():
            threats.append(self._threat(ThreatCategory.SECURITY,
                                        "Real-time malware protection active",
                                        ThreatSeverity.LOW,
                                        "Consider adding project folder to exclusions",
                                        "realtime_protection"))
        return threats

    def detect_system_stability(self) -> List[Threat]:
        threats = []
        uptime = self.probe.uptime_hours()
        if uptime > self.config.uptime_warning_hours:
            threats.append(self._threat(ThreatCategory.SYSTEM_STABILITY,
                                        f"System uptime very high: {uptime:.1f} hours",
                                        ThreatSeverity.LOW,
                                        "Recommend system restart, monitor for instability",
                                        "long_uptime"))

        if self.probe.has_recent_system_errors():
            threats.append(self._threat(ThreatCategory.SYSTEM_STABILITY,
                                        "Recent system errors detected in event log",
                                        ThreatSeverity.MEDIUM,
                                        "Monitor for failures, increase error handling",
                                        "system_errors"))

        # Sustained high load is treated as possible thermal throttling
        if self.probe.cpu_usage_percent(self.config.cpu_sample_seconds) > self.config.thermal_cpu_percent:
            threats.append(self._threat(ThreatCategory.SYSTEM_STABILITY,
                                        "CPU thermal throttling suspected",
                                        ThreatSeverity.HIGH,
                                        "Reduce CPU-intensive operations, cool down period",
                                        "thermal_throttling"))
        return threats

    def detect_file_system(self) -> List[Threat]:
        threats = []
        root = self.config.project_path

        for dir_name in self.config.build_output_dirs:
            build_dir = root / dir_name
            if not build_dir.is_dir():
                continue
            locked = self.probe.locked_files(build_dir)
            if locked:
                threats.append(self._threat(ThreatCategory.FILE_SYSTEM,
                                            f"Locked files detected in {dir_name}: {len(locked)} files",
                                            ThreatSeverity.MEDIUM,
                                            "Force unlock, kill holding processes",
                                            "locked_build_files"))

        long_paths = self.probe.long_paths(root, self.config.max_path_length,
                                           self.config.long_path_scan_limit)
        if long_paths:
            threats.append(self._threat(ThreatCategory.FILE_SYSTEM,
                                        f"Long path names detected: {len(long_paths)} paths > "
                                        f"{self.config.max_path_length} characters",
                                        ThreatSeverity.MEDIUM,
                                        "Shorten paths, enable long path support",
                                        "long_paths"))

        handles = self.probe.handle_count()
        if handles > self.config.max_handle_count:
            threats.append(self._threat(ThreatCategory.FILE_SYSTEM,
                                        f"High file handle count: {handles} handles",
                                        ThreatSeverity.MEDIUM,
                                        "Close unused handles, reduce file operations",
                                        "handle_leak"))
        return threats

    def detect_dev_environment(self) -> List[Threat]:
        threats = []
        build_count = self.inspector.count(self.config.build_tool_processes)
        if build_count > self.config.max_build_tool_processes:
            threats.append(self._threat(ThreatCategory.DEV_ENVIRONMENT,
                                        f"Multiple build tool processes: {build_count} active",
                                        ThreatSeverity.MEDIUM,
                                        "Kill orphaned processes, use single-node build",
                                        "build_tool_sprawl"))

        versions = self.probe.toolchain_versions(self.config.toolchain_list_command)
        if len(versions) > self.config.max_toolchain_versions:
            threats.append(self._threat(ThreatCategory.DEV_ENVIRONMENT,
                                        f"Multiple toolchain versions installed: {len(versions)} versions",
                                        ThreatSeverity.LOW,
                                        "Verify target framework, clean unused versions",
                                        "toolchain_sprawl"))
        return threats

    def detect_conflicting_applications(self) -> List[Threat]:
        threats = []
        if self.inspector.any_running(self.config.ide_processes):
            threats.append(self._threat(ThreatCategory.DEV_ENVIRONMENT,
                                        "IDE is running - may cause build conflicts",
                                        ThreatSeverity.LOW,
                                        "Consider closing the IDE or using a separate build instance",
                                        "ide_running"))
        if self.inspector.any_running(self.config.container_processes):
            threats.append(self._threat(ThreatCategory.MEMORY,
                                        "Container desktop detected - high resource consumption",
                                        ThreatSeverity.MEDIUM,
                                        "Consider pausing containers or reducing their resource limits",
                                        "container_desktop"))
        if self.inspector.any_running(self.config.os_update_processes):
            threats.append(self._threat(ThreatCategory.SYSTEM_STABILITY,
                                        "Operating system update in progress",
                                        ThreatSeverity.HIGH,
                                        "Wait for the update to complete before building",
                                        "os_update"))
        return threats

    def get_threat_summary(self, threats: Optional[List[Threat]] = None) -> Dict[str, Any]:
        """Counts per severity for reporting collaborators."""
        if threats is None:
            threats = self.scan()
        by_severity: Dict[str, int] = {}
        for threat in threats:
            by_severity[threat.severity.name] = by_severity.get(threat.severity.name, 0) + 1
        return {"total": len(threats), "by_severity": by_severity}
