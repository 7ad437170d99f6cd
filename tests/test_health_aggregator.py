from __future__ import annotations

from datetime import datetime

import pytest

from guard_modules import HealthAggregator, HealthLevel, HealthReport, ProtectionLevel, ThreatScanner
from guard_modules.health_aggregator import combine_levels, level_from_score, level_from_threats
from guard_modules.models import Threat, ThreatCategory, ThreatSeverity


@pytest.fixture
def aggregator(config, probe, inspector) -> HealthAggregator:
    return HealthAggregator(config, probe, inspector, ThreatScanner(config, probe, inspector))


def _threat(severity: ThreatSeverity) -> Threat:
    return Threat(ThreatCategory.CPU, "load", severity, datetime.now(), "wait")


def test_all_healthy_inputs_are_optimal(aggregator) -> None:
    report = aggregator.assess()

    assert report.threats == []
    assert report.basic_score == 100
    assert report.overall == HealthLevel.OPTIMAL
    assert report.recommendations == []
    assert report.error_message is None


def test_score_levels() -> None:
    assert level_from_score(80) == HealthLevel.OPTIMAL
    assert level_from_score(79) == HealthLevel.DEGRADED
    assert level_from_score(60) == HealthLevel.DEGRADED
    assert level_from_score(59) == HealthLevel.CRITICAL


def test_threat_levels() -> None:
    assert level_from_threats([]) == HealthLevel.OPTIMAL
    assert level_from_threats([_threat(ThreatSeverity.MEDIUM)]) == HealthLevel.OPTIMAL
    assert level_from_threats([_threat(ThreatSeverity.HIGH)]) == HealthLevel.DEGRADED
    assert level_from_threats([_threat(ThreatSeverity.HIGH), _threat(ThreatSeverity.CRITICAL)]) == HealthLevel.CRITICAL


def test_combine_levels_takes_worst() -> None:
    assert combine_levels(HealthLevel.OPTIMAL, HealthLevel.UNKNOWN) == HealthLevel.OPTIMAL
    assert combine_levels(HealthLevel.OPTIMAL, HealthLevel.DEGRADED, HealthLevel.OPTIMAL) == HealthLevel.DEGRADED


@pytest.mark.parametrize("memory, uptime, msbuild_count", [
    (8000, 10, 0),
    (800, 10, 0),
    (8000, 200, 0),
    (8000, 10, 3),
    (8000, 10, 6),
    (300, 200, 3),
])
def test_overall_is_max_of_contributions(aggregator, probe, inspector, memory, uptime, msbuild_count) -> None:
    probe.memory_mb = memory
    probe.uptime = uptime
    inspector.add("MSBuild", count=msbuild_count)

    report = aggregator.assess()

    assert report.overall == max(
        report.basic_health,
        level_from_threats(report.threats),
        report.build_system_health,
        report.runtime_stability_health,
    )


def test_basic_score_penalties(aggregator, probe, inspector) -> None:
    probe.memory_mb = 400      # -30
    probe.cpu = 80             # -10
    probe.temp_gb = 1.5        # -10
    inspector.add("MsMpEng", working_set_mb=150)  # -20

    assert aggregator.calculate_basic_score() == 30


def test_probe_failure_makes_basic_health_unknown(aggregator, probe) -> None:
    probe.fail = {"temp_free_disk_gb"}

    report = aggregator.assess()

    assert report.basic_score is None
    assert report.basic_health == HealthLevel.UNKNOWN
    assert report.overall == HealthLevel.OPTIMAL


def test_build_system_thresholds(aggregator, inspector) -> None:
    inspector.add("MSBuild", count=3)
    assert aggregator.assess_build_system() == HealthLevel.DEGRADED

    inspector.add("dotnet", count=11)
    assert aggregator.assess_build_system() == HealthLevel.CRITICAL


def test_long_uptime_degrades_runtime_stability(aggregator, probe) -> None:
    probe.uptime = 200
    assert aggregator.assess_runtime_stability() == HealthLevel.DEGRADED

    probe.fail = {"uptime_hours"}
    assert aggregator.assess_runtime_stability() == HealthLevel.UNKNOWN


def test_recommendations_follow_findings(aggregator, probe, inspector) -> None:
    probe.memory_mb = 800
    probe.cpu = 75
    inspector.add("MSBuild", count=3)

    report = aggregator.assess()

    assert report.overall == HealthLevel.DEGRADED
    assert report.recommendations == [
        "Consider restarting the development environment",
        "Close unnecessary applications to free memory",
        "Wait for CPU-intensive tasks to complete",
        "Clean build artifacts and restart build tools",
    ]


def test_recommended_protection_level() -> None:
    now = datetime.now()
    assert HealthAggregator.recommend_protection_level(
        HealthReport(now, overall=HealthLevel.CRITICAL)) == ProtectionLevel.EMERGENCY
    assert HealthAggregator.recommend_protection_level(
        HealthReport(now, overall=HealthLevel.DEGRADED)) == ProtectionLevel.AGGRESSIVE
    assert HealthAggregator.recommend_protection_level(
        HealthReport(now, overall=HealthLevel.OPTIMAL)) == ProtectionLevel.STANDARD
