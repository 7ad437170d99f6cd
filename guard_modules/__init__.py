"""
Environment Guard Modules - Self-Documenting Protection Components

This package contains the components of the environment guard: threat
detection, mitigation, health aggregation, continuous monitoring, resilient
builds and the coordinator tying them together. Each major component carries
help_data for the management CLI and MCP server.
"""

# Import all components for easy access
from .models import (
    ThreatCategory,
    ThreatSeverity,
    HealthLevel,
    ProtectionLevel,
    Threat,
    HealthReport,
    MonitoringSession
)
from .guard_config import GuardConfig, load_config, save_config
from .process_inspector import ProcessInfo, ProcessInspector, PsutilProcessInspector
from .system_probe import NetworkInterface, SystemProbe, PsutilSystemProbe
from .environment import EnvironmentOverrides, MANAGED_VARIABLES
from .build_cleanup import BuildCleaner
from .threat_scanner import ThreatScanner
from .mitigation_engine import MitigationEngine
from .health_aggregator import HealthAggregator
from .continuous_monitor import ContinuousMonitor
from .build_guard import BuildGuard, CommandResult
from .protection_coordinator import ProtectionCoordinator, build_coordinator

__all__ = [
    'ThreatCategory',
    'ThreatSeverity',
    'HealthLevel',
    'ProtectionLevel',
    'Threat',
    'HealthReport',
    'MonitoringSession',
    'GuardConfig',
    'load_config',
    'save_config',
    'ProcessInfo',
    'ProcessInspector',
    'PsutilProcessInspector',
    'NetworkInterface',
    'SystemProbe',
    'PsutilSystemProbe',
    'EnvironmentOverrides',
    'MANAGED_VARIABLES',
    'BuildCleaner',
    'ThreatScanner',
    'MitigationEngine',
    'HealthAggregator',
    'ContinuousMonitor',
    'BuildGuard',
    'CommandResult',
    'ProtectionCoordinator',
    'build_coordinator'
]
