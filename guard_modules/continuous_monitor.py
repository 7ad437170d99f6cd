"""
Continuous Monitor Module - Periodic scan / assess / mitigate loop

Background re-assessment on a fixed interval. A threading.Event is the
cancellation signal: the loop waits on it between ticks, and a tick that
finishes after stop() discards its report, so nothing is applied once stop()
has returned. Errors inside a tick are logged and only delay the next tick.
"""

import logging
import threading
from typing import Callable, Optional

from .health_aggregator import HealthAggregator
from .mitigation_engine import MitigationEngine
from .models import HealthLevel, HealthReport, ThreatSeverity

logger = logging.getLogger(__name__)


class ContinuousMonitor:
    """Lightweight periodic health monitoring."""

    def __init__(self, aggregator: HealthAggregator, engine: MitigationEngine,
                 interval: float = 120.0,
                 on_critical: Optional[Callable[[], None]] = None,
                 on_report: Optional[Callable[[HealthReport], None]] = None,
                 critical_backoff_factor: float = 2.5,
                 error_backoff_seconds: float = 300.0):
        self.aggregator = aggregator
        self.engine = engine
        self.interval = interval
        self.on_critical = on_critical
        self.on_report = on_report
        self.critical_backoff_factor = critical_backoff_factor
        self.error_backoff_seconds = error_backoff_seconds

        self.lock = threading.Lock()
        self.monitor_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        # Held while a tick acts on its report; stop() sets the event under it
        self._tick_lock = threading.RLock()
        self.tick_count = 0
        self.error_count = 0
        self.last_report: Optional[HealthReport] = None

        self.help_data = {
            "name": "Continuous Monitor",
            "description": "Background scan/assess/mitigate cycle with emergency escalation",
            "version": "1.0.0",
            "features": [
                "Fixed interval re-assessment, cadence set by protection level",
                "Medium-or-worse threats mitigated every tick",
                "Critical health triggers emergency protocol and backs off the next tick",
                "Tick errors are isolated and never stop the loop"
            ],
            "configuration": {
                "interval": {"type": "float", "default": 120.0, "description": "Seconds between ticks"},
                "critical_backoff_factor": {"type": "float", "default": 2.5},
                "error_backoff_seconds": {"type": "float", "default": 300.0}
            }
        }

    @property
    def is_running(self) -> bool:
        return self.monitor_thread is not None and self.monitor_thread.is_alive()

    def start(self) -> bool:
        """Start background monitoring. Starting twice keeps the single existing loop."""
        with self.lock:
            if self.is_running:
                return True

            # One event per loop; a stopped thread is never revived
            self._stop_event = threading.Event()
            self.monitor_thread = threading.Thread(
                target=self._monitor_loop, args=(self._stop_event,),
                name="env-guard-monitor", daemon=True)
            self.monitor_thread.start()
        logger.info(f"Continuous monitoring started (every {self.interval:.0f}s)")
        return True

    def stop(self, timeout: float = 5.0):
        """Stop monitoring. Safe to call when monitoring never started."""
        with self.lock:
            thread = self.monitor_thread
            with self._tick_lock:
                self._stop_event.set()
            self.monitor_thread = None

        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            logger.info("Continuous monitoring stopped")

    def set_interval(self, interval: float):
        """Change the base interval; takes effect after the current wait."""
        self.interval = interval

    def _monitor_loop(self, stop_event: threading.Event):
        delay = self.interval
        while not stop_event.wait(delay):
            delay = self.run_once(stop_event)

    def run_once(self, stop_event: Optional[threading.Event] = None) -> float:
        """Run one tick synchronously and return the delay before the next one.

        A tick whose stop_event is set by the time its assessment completes
        applies nothing and calls no callbacks.
        """
        self.tick_count += 1
        try:
            report = self.aggregator.assess()
            with self._tick_lock:
                if stop_event is not None and stop_event.is_set():
                    logger.info("Monitoring stopped during a cycle - discarding its report")
                    return self.interval
                return self._act_on(report)
        except Exception as e:
            self.error_count += 1
            logger.error(f"Monitoring cycle error: {e}")
            return self.error_backoff_seconds

    def _act_on(self, report: HealthReport) -> float:
        self.last_report = report

        elevated = report.threats_at_least(ThreatSeverity.MEDIUM)
        if elevated:
            logger.warning(f"{len(elevated)} threat(s) detected during monitoring cycle")
            self.engine.apply(elevated)

        if self.on_report is not None:
            self.on_report(report)

        if report.overall == HealthLevel.CRITICAL:
            logger.error("CRITICAL HEALTH DETECTED - applying emergency protections")
            if self.on_critical is not None:
                self.on_critical()
            return self.interval * self.critical_backoff_factor

        return self.interval
