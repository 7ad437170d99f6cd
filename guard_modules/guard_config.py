"""
Guard Config Module - settings.json backed configuration

Every threshold, interval, process name and command template used by the guard
lives here with a default, so a missing or corrupt settings.json still yields a
fully working configuration.
"""

import json
import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = Path(__file__).parent.parent / "settings.json"


@dataclass
class GuardConfig:
    """Tunables for scanning, mitigation, monitoring and resilient builds."""
    version: str = "1.0.0"
    project_root: str = "."

    # Threat detection thresholds
    memory_critical_mb: float = 500.0
    memory_warning_mb: float = 1000.0
    cpu_sample_seconds: float = 0.1
    cpu_high_percent: float = 95.0
    cpu_warning_percent: float = 70.0
    thermal_cpu_percent: float = 90.0
    disk_critical_gb: float = 1.0
    min_link_speed_mbps: float = 1.0
    antivirus_working_set_mb: float = 200.0
    uptime_warning_hours: float = 168.0
    max_path_length: int = 260
    max_handle_count: int = 1000
    max_build_tool_processes: int = 3
    max_toolchain_versions: int = 5
    long_path_scan_limit: int = 20000

    # Process names
    build_tool_processes: List[str] = field(default_factory=lambda: ["MSBuild", "dotnet", "VBCSCompiler"])
    antivirus_processes: List[str] = field(default_factory=lambda: [
        "MsMpEng", "avp", "avgnt", "mcshield", "nod32krn", "savservice"])
    ide_processes: List[str] = field(default_factory=lambda: ["devenv"])
    container_processes: List[str] = field(default_factory=lambda: ["Docker Desktop"])
    os_update_processes: List[str] = field(default_factory=lambda: ["TrustedInstaller", "wuauclt"])

    # Health scoring
    score_antivirus_working_set_mb: float = 100.0
    score_max_build_processes: int = 10
    build_system_thresholds: Dict[str, List[int]] = field(default_factory=lambda: {
        "MSBuild": [2, 5],
        "dotnet": [5, 10],
    })

    # Mitigation
    orphan_age_minutes: float = 5.0
    cpu_backoff_seconds: float = 1.0
    io_delay_seconds: float = 0.1
    stale_temp_age_days: float = 1.0
    stale_temp_limit: int = 100
    tool_temp_dirs: List[str] = field(default_factory=lambda: ["MSBuildTemp"])
    tool_temp_file_patterns: List[str] = field(default_factory=lambda: ["MSBuild_*.failure.txt"])
    build_output_dirs: List[str] = field(default_factory=lambda: ["bin", "obj", "TestResults"])

    # Monitoring cadence in seconds, keyed by protection level name
    monitor_intervals: Dict[str, float] = field(default_factory=lambda: {
        "STANDARD": 120.0,
        "AGGRESSIVE": 60.0,
        "EMERGENCY": 30.0,
    })
    critical_backoff_factor: float = 2.5
    error_backoff_seconds: float = 300.0

    # Resilient builds
    build_command: List[str] = field(default_factory=lambda: [
        "dotnet", "build", "{target}", "--verbosity", "minimal", "--nologo"])
    clean_command: List[str] = field(default_factory=lambda: ["dotnet", "clean", "{target}", "--nologo"])
    toolchain_list_command: List[str] = field(default_factory=lambda: ["dotnet", "--list-sdks"])
    build_timeout_seconds: float = 300.0
    clean_timeout_seconds: float = 30.0
    retry_backoff_seconds: float = 2.0
    max_build_attempts: int = 3
    build_environment: Dict[str, str] = field(default_factory=lambda: {
        "MSBuildNodeCount": "1",
        "DOTNET_CLI_TELEMETRY_OPTOUT": "1",
    })
    pipe_break_markers: List[str] = field(default_factory=lambda: [
        "Pipe is broken", "NodeEndpointOutOfProcBase", "exited prematurely"])

    # Coordinator
    settle_seconds: float = 5.0
    optimize_pause_seconds: float = 1.0

    # Switchable components; anything not listed is always on
    modules: Dict[str, Dict[str, Any]] = field(default_factory=lambda: {
        "mitigation_engine": {"enabled": True},
        "continuous_monitor": {"enabled": True},
    })

    @property
    def project_path(self) -> Path:
        return Path(self.project_root).resolve()

    def monitor_interval_for(self, level_name: str) -> Optional[float]:
        """Return the monitoring interval for a protection level, None if unmonitored."""
        return self.monitor_intervals.get(level_name.upper())

    def is_module_enabled(self, module_name: str) -> bool:
        return self.modules.get(module_name, {}).get("enabled", True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuardConfig":
        """Build a config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown settings keys: {', '.join(unknown)}")
        return cls(**values)


def load_config(path: Optional[str] = None) -> GuardConfig:
    """Load configuration from settings.json, falling back to defaults."""
    settings_file = Path(path) if path else DEFAULT_SETTINGS_FILE
    try:
        if settings_file.exists():
            with open(settings_file, 'r') as f:
                return GuardConfig.from_dict(json.load(f))
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.error(f"Failed to load settings from {settings_file}: {e}")

    return GuardConfig()


def save_config(config: GuardConfig, path: Optional[str] = None) -> bool:
    """Save configuration to settings.json."""
    settings_file = Path(path) if path else DEFAULT_SETTINGS_FILE
    try:
        settings_file.parent.mkdir(parents=True, exist_ok=True)
        with open(settings_file, 'w') as f:
            json.dump(config.to_dict(), f, indent=2)
        return True
    except OSError as e:
        logger.error(f"Could not save settings to {settings_file}: {e}")
        return False
