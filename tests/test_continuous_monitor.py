from __future__ import annotations

import threading
from datetime import datetime
from typing import List

import pytest

from guard_modules import ContinuousMonitor, HealthLevel, HealthReport
from guard_modules.models import Threat, ThreatCategory, ThreatSeverity


class StubAggregator:
    def __init__(self, reports: List[HealthReport]) -> None:
        self.reports = list(reports)
        self.calls = 0

    def assess(self) -> HealthReport:
        self.calls += 1
        report = self.reports.pop(0)
        if isinstance(report, Exception):
            raise report
        return report


class StubEngine:
    def __init__(self) -> None:
        self.applied: List[List[Threat]] = []

    def apply(self, threats):
        self.applied.append(list(threats))
        return []


def _report(overall: HealthLevel, *severities: ThreatSeverity) -> HealthReport:
    threats = [Threat(ThreatCategory.CPU, "load", s, datetime.now(), "wait") for s in severities]
    return HealthReport(datetime.now(), overall=overall, threats=threats)


def test_stop_without_start_is_safe() -> None:
    monitor = ContinuousMonitor(StubAggregator([]), StubEngine())

    monitor.stop()

    assert monitor.is_running is False


def test_optimal_tick_returns_base_interval_and_applies_elevated_threats() -> None:
    engine = StubEngine()
    reports = []
    monitor = ContinuousMonitor(
        StubAggregator([_report(HealthLevel.OPTIMAL, ThreatSeverity.LOW, ThreatSeverity.MEDIUM)]),
        engine, interval=60, on_report=reports.append)

    delay = monitor.run_once()

    assert delay == 60
    assert [t.severity for t in engine.applied[0]] == [ThreatSeverity.MEDIUM]
    assert len(reports) == 1


def test_critical_tick_runs_emergency_and_backs_off() -> None:
    emergencies = []
    monitor = ContinuousMonitor(StubAggregator([_report(HealthLevel.CRITICAL, ThreatSeverity.CRITICAL)]),
                                StubEngine(), interval=120, on_critical=lambda: emergencies.append(True))

    delay = monitor.run_once()

    assert emergencies == [True]
    assert delay == pytest.approx(300.0)


def test_tick_error_is_counted_and_delays_next_tick() -> None:
    monitor = ContinuousMonitor(StubAggregator([RuntimeError("probe crashed")]), StubEngine(),
                                error_backoff_seconds=300)

    assert monitor.run_once() == 300
    assert monitor.error_count == 1
    assert monitor.tick_count == 1


def test_start_is_idempotent_and_stop_ends_the_loop() -> None:
    monitor = ContinuousMonitor(StubAggregator([]), StubEngine(), interval=3600)

    monitor.start()
    first = monitor.monitor_thread
    monitor.start()

    assert monitor.is_running
    assert monitor.monitor_thread is first

    monitor.stop(timeout=2)

    assert not monitor.is_running
    assert not first.is_alive()


def test_restart_after_stop_uses_a_new_loop() -> None:
    monitor = ContinuousMonitor(StubAggregator([]), StubEngine(), interval=3600)
    monitor.start()
    first = monitor.monitor_thread
    monitor.stop(timeout=2)

    monitor.start()
    try:
        assert monitor.monitor_thread is not first
        assert monitor.is_running
    finally:
        monitor.stop(timeout=2)


class BlockingAggregator:
    """assess() waits to be released, like a probe stuck in a slow OS query."""

    def __init__(self, report: HealthReport) -> None:
        self.report = report
        self.entered = threading.Event()
        self.release = threading.Event()

    def assess(self) -> HealthReport:
        self.entered.set()
        self.release.wait(10)
        return self.report


def test_tick_finishing_after_stop_applies_nothing() -> None:
    aggregator = BlockingAggregator(_report(HealthLevel.CRITICAL, ThreatSeverity.CRITICAL))
    engine = StubEngine()
    reports, emergencies = [], []
    monitor = ContinuousMonitor(aggregator, engine, interval=0.01, on_report=reports.append,
                                on_critical=lambda: emergencies.append(True))
    monitor.start()
    thread = monitor.monitor_thread
    assert aggregator.entered.wait(5)

    monitor.stop(timeout=0.1)
    aggregator.release.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert engine.applied == []
    assert reports == []
    assert emergencies == []
    assert monitor.last_report is None


def test_run_once_with_stop_already_requested_discards_report() -> None:
    engine = StubEngine()
    stop = threading.Event()
    stop.set()
    monitor = ContinuousMonitor(StubAggregator([_report(HealthLevel.DEGRADED, ThreatSeverity.HIGH)]),
                                engine, interval=45)

    assert monitor.run_once(stop) == 45
    assert engine.applied == []
