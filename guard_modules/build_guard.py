"""
Build Guard Module - Resilient build execution

Runs one build invocation per attempt with a hard wall-clock timeout, detects
inter-process pipe breaks in the captured stderr, cleans up between attempts
and retries with increasing back-off. Never raises to the caller: the result is
True on success and False once every attempt has failed.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional

from .build_cleanup import BuildCleaner
from .errors import BuildAttemptFailure, ExhaustedRetries, GuardError
from .guard_config import GuardConfig

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured outcome of one external command."""
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0


@dataclass
class BuildAttempt:
    """Record of one build attempt for reporting."""
    attempt: int
    outcome: str  # "success", "pipe_break", "failed", "timeout", "error"
    returncode: Optional[int] = None
    duration: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "outcome": self.outcome,
            "returncode": self.returncode,
            "duration": round(self.duration, 2),
            "message": self.message,
        }


CommandRunner = Callable[[List[str], Optional[str], Dict[str, str], float], CommandResult]


def run_command(cmd: List[str], cwd: Optional[str], env: Dict[str, str], timeout: float) -> CommandResult:
    """Run cmd capturing stdout/stderr; kill it if it outlives timeout."""
    start = time.time()
    process = subprocess.Popen(
        cmd,
        cwd=cwd,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace"
    )
    try:
        stdout, stderr = process.communicate(timeout=timeout)
        return CommandResult(process.returncode, stdout or "", stderr or "",
                             duration=time.time() - start)
    except subprocess.TimeoutExpired:
        logger.warning(f"Command timed out after {timeout:.0f}s - killing process {process.pid}")
        process.kill()
        try:
            stdout, stderr = process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            stdout, stderr = "", ""
        return CommandResult(None, stdout or "", stderr or "", timed_out=True,
                             duration=time.time() - start)


class BuildGuard:
    """Wraps build invocations with timeout, pipe-break detection, cleanup and retry."""

    def __init__(self, config: GuardConfig, cleaner: BuildCleaner,
                 runner: CommandRunner = run_command,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.cleaner = cleaner
        self.runner = runner
        self.sleep = sleep
        self.last_attempts: List[BuildAttempt] = []
        self.last_failure: Optional[GuardError] = None

        self.help_data = {
            "name": "Build Guard",
            "description": "Resilient build execution with pipe-break detection and bounded retry",
            "version": "1.0.0",
            "features": [
                "Hard per-attempt timeout kills hung builds",
                "Pipe-break markers in stderr distinguish IPC failures from compile errors",
                "Cleanup before every retry: orphaned tools, build outputs, tool temp caches",
                "Linear back-off between attempts"
            ],
            "configuration": {
                "max_build_attempts": config.max_build_attempts,
                "build_timeout_seconds": config.build_timeout_seconds,
                "retry_backoff_seconds": config.retry_backoff_seconds,
                "pipe_break_markers": list(config.pipe_break_markers)
            },
            "troubleshooting": {
                "pipe_break": "Reduce build parallelism (MSBuildNodeCount=1) and kill orphaned build servers",
                "timeout": "Increase build_timeout_seconds or check for hung compiler servers"
            }
        }

    def execute_resilient_build(self, target: str, max_attempts: Optional[int] = None) -> bool:
        """Build target, retrying up to max_attempts times."""
        max_attempts = max_attempts or self.config.max_build_attempts
        self.last_attempts = []
        self.last_failure = None
        logger.info(f"Starting resilient build of {target}")

        for attempt in range(1, max_attempts + 1):
            try:
                logger.info(f"Build attempt {attempt}/{max_attempts}")
                if attempt > 1:
                    self.pre_build_cleanup(target)

                self._run_attempt(attempt, target)
                logger.info(f"Build succeeded on attempt {attempt}")
                return True
            except BuildAttemptFailure as e:
                self.last_failure = e
                logger.warning(f"Build failed on {e}")
            except Exception as e:
                self.last_failure = BuildAttemptFailure(attempt, str(e))
                self.last_attempts.append(BuildAttempt(attempt, "error", message=str(e)))
                logger.error(f"Build attempt {attempt} threw exception: {e}")

            if attempt < max_attempts:
                delay = self.config.retry_backoff_seconds * attempt
                logger.info(f"Waiting {delay:.0f}s before retry attempt {attempt + 1}...")
                self.sleep(delay)
                self._forced_cleanup()

        self.last_failure = ExhaustedRetries(f"All {max_attempts} build attempts failed for {target}")
        logger.error(str(self.last_failure))
        return False

    def _run_attempt(self, attempt: int, target: str):
        """Run the build once; raise BuildAttemptFailure unless it succeeded."""
        result = self.runner(self._format(self.config.build_command, target),
                             self._working_dir(target),
                             self._build_env(),
                             self.config.build_timeout_seconds)

        if result.timed_out:
            self._record(attempt, "timeout", result, "Build timed out and was killed")
            raise BuildAttemptFailure(attempt, f"timed out after {self.config.build_timeout_seconds:.0f}s")

        if self.is_pipe_break(result.stderr):
            logger.warning("Build tool pipe break detected")
            self._record(attempt, "pipe_break", result, "Inter-process pipe broke")
            raise BuildAttemptFailure(attempt, "pipe break")

        if result.returncode == 0:
            self._record(attempt, "success", result)
            return

        logger.error(f"Build failed with exit code: {result.returncode}")
        if result.stderr:
            logger.error(f"Error output: {result.stderr.strip()}")
        if result.stdout:
            logger.info(f"Build output: {result.stdout.strip()[-2000:]}")
        self._record(attempt, "failed", result, f"exit code {result.returncode}")
        raise BuildAttemptFailure(attempt, f"exit code {result.returncode}")

    def is_pipe_break(self, stderr: str) -> bool:
        return any(marker in (stderr or "") for marker in self.config.pipe_break_markers)

    def pre_build_cleanup(self, target: str):
        """Cleanup before a retry: orphans, clean command, build outputs, tool temp."""
        logger.info("Performing pre-build cleanup...")
        try:
            self.cleaner.kill_orphaned_build_processes()
            self._run_clean_command(target)
            self.cleaner.clean_build_artifacts(self._working_dir(target) or self.config.project_path)
            self.cleaner.clear_tool_temp()
            logger.info("Pre-build cleanup completed")
        except Exception as e:
            logger.warning(f"Pre-build cleanup warning: {e}")

    def _forced_cleanup(self):
        try:
            self.cleaner.force_environment_cleanup()
        except Exception as e:
            logger.warning(f"Environment cleanup encountered errors: {e}")

    def _run_clean_command(self, target: str):
        if not self.config.clean_command:
            return
        try:
            result = self.runner(self._format(self.config.clean_command, target),
                                 self._working_dir(target),
                                 self._build_env(),
                                 self.config.clean_timeout_seconds)
            if result.timed_out or result.returncode not in (0, None):
                logger.warning(f"Clean command did not complete cleanly (exit {result.returncode})")
        except OSError as e:
            logger.warning(f"Clean command warning: {e}")

    def _record(self, attempt: int, outcome: str, result: CommandResult, message: str = ""):
        self.last_attempts.append(BuildAttempt(
            attempt=attempt,
            outcome=outcome,
            returncode=result.returncode,
            duration=result.duration,
            message=message
        ))

    def _format(self, template: List[str], target: str) -> List[str]:
        return [part.replace("{target}", target) for part in template]

    def _working_dir(self, target: str) -> Optional[str]:
        path = Path(target)
        if path.is_file():
            return str(path.resolve().parent)
        if path.is_dir():
            return str(path.resolve())
        return None

    def _build_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.config.build_environment)
        return env
