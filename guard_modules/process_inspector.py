"""
Process Inspector Module - Build tool process enumeration and termination

Wraps psutil behind a small interface so kill decisions (by name and age) can be
exercised against a fake process table in tests.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, List

import psutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessInfo:
    """Snapshot of one running process."""
    pid: int
    name: str
    create_time: float
    working_set_mb: float = 0.0
    # Live process object from enumeration, when the backend has one
    handle: Any = field(default=None, compare=False, repr=False)

    def age_minutes(self, now: float = None) -> float:
        if now is None:
            now = time.time()
        return max(0.0, (now - self.create_time) / 60.0)


def _normalize(name: str) -> str:
    name = name.lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


class ProcessInspector(ABC):
    """Enumerates and terminates processes by name."""

    @abstractmethod
    def find(self, names: Iterable[str]) -> List[ProcessInfo]:
        """Return running processes whose name matches any of names."""

    @abstractmethod
    def kill(self, pid: int) -> bool:
        """Terminate pid. A process that already exited counts as success."""

    def kill_process(self, proc: ProcessInfo) -> bool:
        """Terminate the process proc was taken from, never a later owner of its pid."""
        return self.kill(proc.pid)

    @abstractmethod
    def lower_own_priority(self):
        """Drop this process below normal scheduling priority."""

    def count(self, names: Iterable[str]) -> int:
        return len(self.find(names))

    def any_running(self, names: Iterable[str]) -> bool:
        return bool(self.find(names))

    def kill_older_than(self, names: Iterable[str], min_age_minutes: float, now: float = None) -> List[int]:
        """Kill matching processes older than min_age_minutes; return the pids killed."""
        if now is None:
            now = time.time()
        killed = []
        for proc in self.find(names):
            if proc.age_minutes(now) <= min_age_minutes:
                continue
            logger.info(f"Killing orphaned process: {proc.name} (PID: {proc.pid}, "
                        f"age {proc.age_minutes(now):.1f} min)")
            if self.kill_process(proc):
                killed.append(proc.pid)
        return killed


class PsutilProcessInspector(ProcessInspector):
    """ProcessInspector backed by psutil."""

    def __init__(self, kill_wait_seconds: float = 1.0):
        self.kill_wait_seconds = kill_wait_seconds

    def find(self, names: Iterable[str]) -> List[ProcessInfo]:
        wanted = {_normalize(n) for n in names}
        found = []
        for proc in psutil.process_iter(['pid', 'name', 'create_time', 'memory_info']):
            try:
                name = proc.info['name'] or ""
                if _normalize(name) not in wanted:
                    continue
                mem = proc.info['memory_info']
                found.append(ProcessInfo(
                    pid=proc.info['pid'],
                    name=name,
                    create_time=proc.info['create_time'] or time.time(),
                    working_set_mb=(mem.rss / (1024 * 1024)) if mem else 0.0,
                    handle=proc
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return found

    def kill(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return True
        except psutil.AccessDenied:
            logger.warning(f"Access denied opening process {pid}")
            return False
        return self._kill(proc)

    def kill_process(self, proc: ProcessInfo) -> bool:
        if proc.handle is not None:
            return self._kill(proc.handle)
        return super().kill_process(proc)

    def _kill(self, proc: psutil.Process) -> bool:
        try:
            # False also when the pid now belongs to a newer process
            if not proc.is_running():
                return True
            proc.kill()
            proc.wait(timeout=self.kill_wait_seconds)
            return True
        except psutil.NoSuchProcess:
            # Exited between enumeration and termination
            return True
        except psutil.TimeoutExpired:
            logger.warning(f"Process {proc.pid} did not exit within {self.kill_wait_seconds}s of kill")
            return False
        except psutil.AccessDenied:
            logger.warning(f"Access denied killing process {proc.pid}")
            return False

    def lower_own_priority(self):
        proc = psutil.Process()
        if hasattr(psutil, "BELOW_NORMAL_PRIORITY_CLASS"):
            proc.nice(psutil.BELOW_NORMAL_PRIORITY_CLASS)
        elif proc.nice() < 10:
            proc.nice(10)
