"""
Build Cleanup Module - Shared cleanup routines

Used by mitigations, the resilient build retry path, the emergency protocol and
post-build cleanup. Every routine is best-effort: individual failures are logged
and skipped so one locked file never aborts the rest of a cleanup pass.
"""

import gc
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional

from .environment import EnvironmentOverrides
from .guard_config import GuardConfig
from .process_inspector import ProcessInspector

logger = logging.getLogger(__name__)


def force_garbage_collection() -> int:
    """Full collection, run twice so finalizer-released objects are reclaimed."""
    collected = gc.collect()
    collected += gc.collect()
    return collected


class BuildCleaner:
    """Kills orphaned build tools and removes build/temp artifacts."""

    def __init__(self, config: GuardConfig, inspector: ProcessInspector,
                 overrides: EnvironmentOverrides, temp_dir: Optional[str] = None,
                 collect_garbage: Callable[[], int] = force_garbage_collection):
        self.config = config
        self.inspector = inspector
        self.overrides = overrides
        self.temp_dir = Path(temp_dir or tempfile.gettempdir())
        self.collect_garbage = collect_garbage

    def kill_orphaned_build_processes(self, names: Optional[List[str]] = None) -> List[int]:
        """Kill build-tool processes older than the orphan age threshold."""
        names = names or self.config.build_tool_processes
        try:
            killed = self.inspector.kill_older_than(names, self.config.orphan_age_minutes)
        except Exception as e:
            logger.warning(f"Error killing orphaned processes: {e}")
            return []
        if killed:
            logger.info(f"Killed {len(killed)} orphaned build process(es)")
        return killed

    def clear_tool_temp(self) -> int:
        """Remove toolchain temp directories and failure logs from the temp root."""
        removed = 0
        for dir_name in self.config.tool_temp_dirs:
            path = self.temp_dir / dir_name
            if path.is_dir():
                if _remove_tree(path):
                    removed += 1

        for pattern in self.config.tool_temp_file_patterns:
            for path in self.temp_dir.glob(pattern):
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.debug(f"Could not delete {path}: {e}")
        return removed

    def clean_build_artifacts(self, root: Path, recursive: bool = True) -> int:
        """Delete build-output directories (bin/obj/...) under root."""
        root = Path(root)
        if not root.is_dir():
            return 0

        targets = []
        for dir_name in self.config.build_output_dirs:
            if recursive:
                targets.extend(p for p in root.rglob(dir_name) if p.is_dir())
            elif (root / dir_name).is_dir():
                targets.append(root / dir_name)

        removed = 0
        # Deepest first so nested matches are gone before their parents
        for path in sorted(set(targets), key=lambda p: len(p.parts), reverse=True):
            if path.exists() and _remove_tree(path):
                removed += 1
        if removed:
            logger.info(f"Removed {removed} build output director{'y' if removed == 1 else 'ies'} under {root}")
        return removed

    def purge_stale_temp_files(self) -> int:
        """Delete up to stale_temp_limit temp-root files older than stale_temp_age_days."""
        cutoff = time.time() - self.config.stale_temp_age_days * 86400
        purged = 0
        try:
            entries = list(self.temp_dir.iterdir())
        except OSError as e:
            logger.warning(f"Cannot list temp directory {self.temp_dir}: {e}")
            return 0

        for path in entries:
            if purged >= self.config.stale_temp_limit:
                break
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    purged += 1
            except OSError:
                continue
        if purged:
            logger.info(f"Purged {purged} stale temp file(s)")
        return purged

    def reset_build_environment(self):
        self.overrides.set_many({"MSBuildNodeCount": None, "MSBUILDDEBUGPATH": None})

    def force_environment_cleanup(self):
        """Comprehensive cleanup used after pipe breaks and during emergencies."""
        logger.warning("Forcing comprehensive environment cleanup...")
        self.kill_orphaned_build_processes()
        self.clear_tool_temp()
        self.collect_garbage()
        self.reset_build_environment()
        logger.info("Comprehensive environment cleanup completed")


def _remove_tree(path: Path) -> bool:
    try:
        shutil.rmtree(path)
        return True
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")
        return False
