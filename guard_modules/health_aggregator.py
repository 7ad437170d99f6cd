"""
Health Aggregator Module - Single ordinal health verdict

Combines a penalty-based environment score, the full threat scan and two narrow
subsystem probes (build system, runtime stability) into one HealthReport whose
overall level is the worst of the four contributions.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .guard_config import GuardConfig
from .models import (
    HealthLevel, HealthReport, ProtectionLevel, Threat, ThreatCategory, ThreatSeverity
)
from .process_inspector import ProcessInspector
from .system_probe import SystemProbe
from .threat_scanner import ThreatScanner

logger = logging.getLogger(__name__)


def level_from_score(score: int) -> HealthLevel:
    if score >= 80:
        return HealthLevel.OPTIMAL
    if score >= 60:
        return HealthLevel.DEGRADED
    return HealthLevel.CRITICAL


def level_from_threats(threats: List[Threat]) -> HealthLevel:
    """Critical threat -> CRITICAL, High threat -> DEGRADED, otherwise OPTIMAL."""
    if any(t.severity == ThreatSeverity.CRITICAL for t in threats):
        return HealthLevel.CRITICAL
    if any(t.severity == ThreatSeverity.HIGH for t in threats):
        return HealthLevel.DEGRADED
    return HealthLevel.OPTIMAL


def combine_levels(*levels: HealthLevel) -> HealthLevel:
    """Worst-of-all aggregation."""
    return max(levels)


class HealthAggregator:
    """Produces HealthReports from probes and the threat scanner."""

    def __init__(self, config: GuardConfig, probe: SystemProbe, inspector: ProcessInspector,
                 scanner: ThreatScanner, clock: Callable[[], datetime] = datetime.now):
        self.config = config
        self.probe = probe
        self.inspector = inspector
        self.scanner = scanner
        self.clock = clock

        self.help_data = {
            "name": "Health Aggregator",
            "description": "Worst-of-four health verdict with recommendations",
            "version": "1.0.0",
            "features": [
                "Penalty score from memory, CPU, antivirus, build processes and temp space",
                "Threat-derived, build-system and runtime-stability sub-levels",
                "Overall health is the maximum of all contributions"
            ],
            "output_format": {
                "overall": "UNKNOWN, OPTIMAL, DEGRADED or CRITICAL",
                "basic_score": "0-100 environment score",
                "recommendations": "Human readable next steps"
            },
            "ai_metadata": {
                "interpretation": {
                    "OPTIMAL": "Safe to build",
                    "DEGRADED": "Build with reduced parallelism",
                    "CRITICAL": "Emergency protections needed before building"
                }
            }
        }

    def assess(self) -> HealthReport:
        """Compute a fresh report. Never raises."""
        report = HealthReport(timestamp=self.clock())
        try:
            score = self.calculate_basic_score()
            report.basic_score = score
            report.basic_health = level_from_score(score) if score is not None else HealthLevel.UNKNOWN

            report.threats = self.scanner.scan()
            report.build_system_health = self.assess_build_system()
            report.runtime_stability_health = self.assess_runtime_stability()

            report.overall = combine_levels(
                report.basic_health,
                level_from_threats(report.threats),
                report.build_system_health,
                report.runtime_stability_health
            )
            report.recommendations = self.generate_recommendations(report)
            logger.info(f"Health check complete - overall health: {report.overall.name}")
        except Exception as e:
            logger.error(f"Health check error: {e}")
            report.error_message = str(e)
        return report

    def calculate_basic_score(self) -> Optional[int]:
        """Start at 100 and subtract fixed penalties. None if the probes fail."""
        try:
            score = 100

            available = self.probe.available_memory_mb()
            if available < 500:
                score -= 30
            elif available < 1000:
                score -= 15

            # Same signal as the CPU threat detector; both feed the overall level
            cpu = self.probe.cpu_usage_percent(self.config.cpu_sample_seconds)
            if cpu > 90:
                score -= 25
            elif cpu > 70:
                score -= 10

            if self._antivirus_interfering():
                score -= 20

            if self.inspector.count(self.config.build_tool_processes) > self.config.score_max_build_processes:
                score -= 15

            temp_free = self.probe.temp_free_disk_gb()
            if temp_free < 1:
                score -= 20
            elif temp_free < 2:
                score -= 10

            return score
        except Exception as e:
            logger.warning(f"Basic environment scoring failed: {e}")
            return None

    def _antivirus_interfering(self) -> bool:
        threshold = self.config.score_antivirus_working_set_mb
        return any(p.working_set_mb > threshold for p in self.inspector.find(self.config.antivirus_processes))

    def assess_build_system(self) -> HealthLevel:
        """Per-tool process count thresholds: [degraded_above, critical_above]."""
        try:
            level = HealthLevel.OPTIMAL
            for tool, (degraded_above, critical_above) in self.config.build_system_thresholds.items():
                count = self.inspector.count([tool])
                if count > critical_above:
                    return HealthLevel.CRITICAL
                if count > degraded_above:
                    level = HealthLevel.DEGRADED
            return level
        except Exception as e:
            logger.warning(f"Build system health probe failed: {e}")
            return HealthLevel.UNKNOWN

    def assess_runtime_stability(self) -> HealthLevel:
        try:
            if self.probe.uptime_hours() > self.config.uptime_warning_hours:
                return HealthLevel.DEGRADED
            return HealthLevel.OPTIMAL
        except Exception as e:
            logger.warning(f"Runtime stability probe failed: {e}")
            return HealthLevel.UNKNOWN

    def generate_recommendations(self, report: HealthReport) -> List[str]:
        recommendations = []
        categories = {t.category for t in report.threats}

        if report.overall >= HealthLevel.DEGRADED:
            recommendations.append("Consider restarting the development environment")
        if ThreatCategory.MEMORY in categories:
            recommendations.append("Close unnecessary applications to free memory")
        if ThreatCategory.CPU in categories:
            recommendations.append("Wait for CPU-intensive tasks to complete")
        if report.build_system_health >= HealthLevel.DEGRADED:
            recommendations.append("Clean build artifacts and restart build tools")
        return recommendations

    @staticmethod
    def recommend_protection_level(report: HealthReport) -> ProtectionLevel:
        """Protection level appropriate for a report."""
        if report.overall == HealthLevel.CRITICAL:
            return ProtectionLevel.EMERGENCY
        if report.overall == HealthLevel.DEGRADED:
            return ProtectionLevel.AGGRESSIVE
        if report.threats_at_least(ThreatSeverity.HIGH):
            return ProtectionLevel.AGGRESSIVE
        return ProtectionLevel.STANDARD
