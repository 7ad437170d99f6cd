from __future__ import annotations

import os
import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from guard_modules import ProcessInfo, PsutilProcessInspector, PsutilSystemProbe
from guard_modules.system_probe import _is_locked


class ReusedPidHandle:
    """Process handle whose pid has since been given to a newer process."""

    pid = 4242

    def __init__(self) -> None:
        self.killed = False

    def is_running(self) -> bool:
        return False

    def kill(self) -> None:
        self.killed = True

    def wait(self, timeout=None) -> int:
        return 0


def _spawn(seconds: float) -> subprocess.Popen:
    return subprocess.Popen([sys.executable, "-c", f"import time; time.sleep({seconds})"])


def test_kill_of_exited_process_counts_as_success() -> None:
    child = _spawn(0)
    child.wait(timeout=30)

    assert PsutilProcessInspector().kill(child.pid) is True


def test_kill_through_handle_of_exited_process_counts_as_success() -> None:
    child = _spawn(0)
    info = ProcessInfo(child.pid, "python", time.time(), handle=psutil.Process(child.pid))
    child.wait(timeout=30)

    assert PsutilProcessInspector().kill_process(info) is True


def test_kill_process_terminates_live_child() -> None:
    child = _spawn(60)
    try:
        info = ProcessInfo(child.pid, "python", time.time(), handle=psutil.Process(child.pid))

        assert PsutilProcessInspector(kill_wait_seconds=10).kill_process(info) is True
        assert child.poll() is not None
    finally:
        if child.poll() is None:
            child.kill()
            child.wait(timeout=10)


def test_reused_pid_is_left_alone() -> None:
    handle = ReusedPidHandle()
    info = ProcessInfo(handle.pid, "MSBuild", time.time() - 3600, handle=handle)

    assert PsutilProcessInspector().kill_process(info) is True
    assert handle.killed is False


def test_kill_older_than_uses_enumerated_handles() -> None:
    handle = ReusedPidHandle()

    class OneStaleProcess(PsutilProcessInspector):
        def find(self, names):
            return [ProcessInfo(handle.pid, "MSBuild", time.time() - 3600, handle=handle)]

    assert OneStaleProcess().kill_older_than(["MSBuild"], 5) == [handle.pid]
    assert handle.killed is False


def test_find_keeps_the_process_handle() -> None:
    child = _spawn(60)
    try:
        name = psutil.Process(child.pid).name()

        found = [p for p in PsutilProcessInspector().find([name]) if p.pid == child.pid]

        assert len(found) == 1
        assert found[0].handle.pid == child.pid
        assert found[0].handle.is_running()
    finally:
        child.kill()
        child.wait(timeout=10)


@pytest.mark.skipif(os.name != "posix", reason="flock-based lock detection")
def test_is_locked_sees_exclusive_lock(tmp_path: Path) -> None:
    import fcntl

    path = tmp_path / "App.dll"
    path.write_bytes(b"MZ")
    assert _is_locked(str(path)) is False

    with open(path, "rb+") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        assert _is_locked(str(path)) is True
        assert PsutilSystemProbe().locked_files(tmp_path) == [str(path)]

    assert _is_locked(str(path)) is False


def test_is_locked_ignores_missing_file(tmp_path: Path) -> None:
    assert _is_locked(str(tmp_path / "gone.dll")) is False


def test_long_paths_reports_entries_over_the_limit(tmp_path: Path) -> None:
    deep = tmp_path / ("a" * 40) / ("b" * 40)
    deep.mkdir(parents=True)
    (tmp_path / "short").mkdir()
    max_length = len(str(tmp_path)) + 50

    probe = PsutilSystemProbe()

    assert probe.long_paths(tmp_path, max_length, limit=1000) == [str(deep)]
    # Walk stops once limit entries have been visited
    assert probe.long_paths(tmp_path, max_length, limit=1) == []
