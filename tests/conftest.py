from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from guard_modules import (
    GuardConfig,
    NetworkInterface,
    ProcessInfo,
    ProcessInspector,
    SystemProbe,
    build_coordinator,
)
from guard_modules.build_guard import CommandResult
from guard_modules.process_inspector import _normalize


class FakeProbe(SystemProbe):
    """Healthy host by default; tests tweak attributes or list methods to fail."""

    def __init__(self) -> None:
        self.memory_mb = 8000.0
        self.cpu = 10.0
        self.disk_gb = 100.0
        self.temp_gb = 100.0
        self.interfaces = [NetworkInterface("eth0", True, 1000.0)]
        self.elevated = True
        self.realtime = False
        self.uptime = 10.0
        self.system_errors = False
        self.handles = 100
        self.locked: Dict[str, List[str]] = {}
        self.long: List[str] = []
        self.versions = ["8.0.100"]
        self.fail: set = set()

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    def available_memory_mb(self) -> float:
        self._check("available_memory_mb")
        return self.memory_mb

    def cpu_usage_percent(self, sample_seconds: float) -> float:
        self._check("cpu_usage_percent")
        return self.cpu

    def system_free_disk_gb(self) -> float:
        self._check("system_free_disk_gb")
        return self.disk_gb

    def temp_free_disk_gb(self) -> float:
        self._check("temp_free_disk_gb")
        return self.temp_gb

    def network_interfaces(self) -> List[NetworkInterface]:
        self._check("network_interfaces")
        return list(self.interfaces)

    def is_elevated(self) -> bool:
        self._check("is_elevated")
        return self.elevated

    def realtime_protection_enabled(self) -> bool:
        return self.realtime

    def uptime_hours(self) -> float:
        self._check("uptime_hours")
        return self.uptime

    def has_recent_system_errors(self) -> bool:
        return self.system_errors

    def handle_count(self) -> int:
        return self.handles

    def locked_files(self, directory: Path) -> List[str]:
        return self.locked.get(Path(directory).name, [])

    def long_paths(self, root: Path, max_length: int, limit: int) -> List[str]:
        return list(self.long)

    def toolchain_versions(self, command: List[str]) -> List[str]:
        return list(self.versions)


class FakeInspector(ProcessInspector):
    """In-memory process table."""

    def __init__(self) -> None:
        self.processes: List[ProcessInfo] = []
        self.killed: List[int] = []
        self.priority_lowered = 0
        self._next_pid = 1000

    def add(self, name: str, age_minutes: float = 0.0, working_set_mb: float = 50.0,
            count: int = 1) -> List[int]:
        pids = []
        for _ in range(count):
            self._next_pid += 1
            self.processes.append(ProcessInfo(
                pid=self._next_pid,
                name=name,
                create_time=time.time() - age_minutes * 60,
                working_set_mb=working_set_mb,
            ))
            pids.append(self._next_pid)
        return pids

    def find(self, names: Iterable[str]) -> List[ProcessInfo]:
        wanted = {_normalize(n) for n in names}
        return [p for p in self.processes if _normalize(p.name) in wanted]

    def kill(self, pid: int) -> bool:
        self.killed.append(pid)
        self.processes = [p for p in self.processes if p.pid != pid]
        return True

    def lower_own_priority(self) -> None:
        self.priority_lowered += 1


class FakeRunner:
    """Command runner returning scripted build results; clean commands always succeed."""

    def __init__(self, build_results: Optional[List[CommandResult]] = None) -> None:
        self.build_results = list(build_results or [])
        self.calls: List[List[str]] = []
        self.events: List[str] = []

    def __call__(self, cmd, cwd, env, timeout) -> CommandResult:
        self.calls.append(list(cmd))
        if "clean" in cmd:
            self.events.append("clean")
            return CommandResult(0)
        self.events.append("build")
        if len(self.build_results) > 1:
            return self.build_results.pop(0)
        return self.build_results[0] if self.build_results else CommandResult(0)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class GcCounter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> int:
        self.calls += 1
        return 0


class FakeMonitor:
    """Stands in for ContinuousMonitor so no thread is started."""

    instances: List["FakeMonitor"] = []

    def __init__(self, aggregator, engine, interval=120.0, on_critical=None, on_report=None,
                 critical_backoff_factor=2.5, error_backoff_seconds=300.0) -> None:
        self.interval = interval
        self.on_critical = on_critical
        self.on_report = on_report
        self.starts = 0
        self.stops = 0
        self.is_running = False
        FakeMonitor.instances.append(self)

    def start(self) -> bool:
        self.starts += 1
        self.is_running = True
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self.stops += 1
        self.is_running = False

    def set_interval(self, interval: float) -> None:
        self.interval = interval


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "temp"
    path.mkdir()
    return path


@pytest.fixture
def config(project_dir: Path) -> GuardConfig:
    return GuardConfig(project_root=str(project_dir))


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def environ() -> Dict[str, str]:
    return {}


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def gc_counter() -> GcCounter:
    return GcCounter()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def coordinator(config, probe, inspector, environ, runner, sleeps, temp_dir, gc_counter):
    FakeMonitor.instances = []
    coord = build_coordinator(
        config,
        probe=probe,
        inspector=inspector,
        environ=environ,
        runner=runner,
        sleep=sleeps,
        temp_dir=str(temp_dir),
        collect_garbage=gc_counter,
    )
    coord.monitor_factory = FakeMonitor
    yield coord
    coord.shutdown()
