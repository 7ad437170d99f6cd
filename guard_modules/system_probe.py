"""
System Probe Module - Raw host readings for threat detection and health scoring

The probe only reads; it never decides what is adverse. ThreatScanner and
HealthAggregator apply thresholds to these readings. PsutilSystemProbe is the
real implementation, tests substitute their own.
"""

import ctypes
import os
import subprocess
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List

import psutil

from .errors import DetectionError

MB = 1024 * 1024
GB = 1024 * MB


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    is_up: bool
    speed_mbps: float  # 0 when the OS does not report a speed
    is_loopback: bool = False


class SystemProbe(ABC):
    """Narrow capability interface over the host operating system."""

    @abstractmethod
    def available_memory_mb(self) -> float: ...

    @abstractmethod
    def cpu_usage_percent(self, sample_seconds: float) -> float: ...

    @abstractmethod
    def system_free_disk_gb(self) -> float: ...

    @abstractmethod
    def temp_free_disk_gb(self) -> float: ...

    @abstractmethod
    def network_interfaces(self) -> List[NetworkInterface]: ...

    @abstractmethod
    def is_elevated(self) -> bool: ...

    @abstractmethod
    def realtime_protection_enabled(self) -> bool: ...

    @abstractmethod
    def uptime_hours(self) -> float: ...

    @abstractmethod
    def has_recent_system_errors(self) -> bool: ...

    @abstractmethod
    def handle_count(self) -> int: ...

    @abstractmethod
    def locked_files(self, directory: Path) -> List[str]: ...

    @abstractmethod
    def long_paths(self, root: Path, max_length: int, limit: int) -> List[str]: ...

    @abstractmethod
    def toolchain_versions(self, command: List[str]) -> List[str]: ...


class PsutilSystemProbe(SystemProbe):
    """SystemProbe backed by psutil and a handful of OS commands."""

    def __init__(self, command_timeout: float = 5.0):
        self.command_timeout = command_timeout
        self._process = psutil.Process()

    def available_memory_mb(self) -> float:
        return psutil.virtual_memory().available / MB

    def cpu_usage_percent(self, sample_seconds: float) -> float:
        """Process CPU time consumed over a short wall-clock window, across all cores."""
        start_wall = time.monotonic()
        start_cpu = self._process.cpu_times()
        time.sleep(sample_seconds)
        end_cpu = self._process.cpu_times()
        elapsed = time.monotonic() - start_wall

        used = (end_cpu.user + end_cpu.system) - (start_cpu.user + start_cpu.system)
        cores = psutil.cpu_count() or 1
        if elapsed <= 0:
            return 0.0
        return max(0.0, min(100.0, used / (cores * elapsed) * 100.0))

    def system_free_disk_gb(self) -> float:
        if sys.platform == "win32":
            root = os.environ.get("SystemDrive", "C:") + "\\"
        else:
            root = "/"
        return psutil.disk_usage(root).free / GB

    def temp_free_disk_gb(self) -> float:
        return psutil.disk_usage(tempfile.gettempdir()).free / GB

    def network_interfaces(self) -> List[NetworkInterface]:
        interfaces = []
        for name, stats in psutil.net_if_stats().items():
            flags = getattr(stats, "flags", "") or ""
            interfaces.append(NetworkInterface(
                name=name,
                is_up=stats.isup,
                speed_mbps=float(stats.speed or 0),
                is_loopback="loopback" in flags or name == "lo" or name.lower().startswith("loopback")
            ))
        return interfaces

    def is_elevated(self) -> bool:
        if sys.platform == "win32":
            try:
                return bool(ctypes.windll.shell32.IsUserAnAdmin())
            except (AttributeError, OSError) as e:
                raise DetectionError("privileges", str(e))
        return os.geteuid() == 0

    def realtime_protection_enabled(self) -> bool:
        if sys.platform != "win32":
            return False

        import winreg
        try:
            key = winreg.OpenKey(
                winreg.HKEY_LOCAL_MACHINE,
                r"SOFTWARE\Microsoft\Windows Defender\Real-Time Protection"
            )
        except OSError:
            # Unreadable key: assume protection is on
            return True
        with key:
            try:
                value, _ = winreg.QueryValueEx(key, "DisableRealtimeMonitoring")
            except FileNotFoundError:
                return True
        return value != 1

    def uptime_hours(self) -> float:
        return (time.time() - psutil.boot_time()) / 3600.0

    def has_recent_system_errors(self) -> bool:
        if sys.platform == "win32":
            cmd = ["wevtutil", "qe", "System", "/c:1", "/f:text",
                   "/q:*[System[(Level=2) and TimeCreated[timediff(@SystemTime) <= 86400000]]]"]
        else:
            cmd = ["journalctl", "-p", "err", "--since", "-24h", "-n", "1", "-q", "--no-pager"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.command_timeout)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0 and bool(result.stdout.strip())

    def handle_count(self) -> int:
        if sys.platform == "win32":
            return self._process.num_handles()
        return self._process.num_fds()

    def locked_files(self, directory: Path) -> List[str]:
        locked = []
        for dirpath, _, filenames in os.walk(directory):
            for filename in filenames:
                path = os.path.join(dirpath, filename)
                if _is_locked(path):
                    locked.append(path)
        return locked

    def long_paths(self, root: Path, max_length: int, limit: int) -> List[str]:
        found = []
        visited = 0
        for dirpath, dirnames, filenames in os.walk(root):
            for entry in dirnames + filenames:
                visited += 1
                path = os.path.join(dirpath, entry)
                if len(path) > max_length:
                    found.append(path)
            if visited >= limit:
                break
        return found

    def toolchain_versions(self, command: List[str]) -> List[str]:
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=self.command_timeout)
        except (OSError, subprocess.TimeoutExpired):
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]


def _is_locked(path: str) -> bool:
    """True when another process holds the file open exclusively."""
    try:
        handle = open(path, 'rb+')
    except PermissionError:
        # Sharing violation on Windows; plain file mode bits elsewhere
        return os.name != "posix"
    except OSError:
        return False

    with handle:
        if os.name != "posix":
            return False
        import fcntl
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        except OSError:
            return False
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    return False
