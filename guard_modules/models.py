"""
Guard Models Module - Shared value types

Threats, ordinal health/protection levels, health reports and the
process-wide monitoring session owned by a ProtectionCoordinator.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Dict, Any, List, Optional


class ThreatCategory(str, Enum):
    """Category of a detected adverse condition."""
    MEMORY = "Memory"
    CPU = "CPU"
    STORAGE = "Storage"
    NETWORK = "Network"
    SECURITY = "Security"
    SYSTEM_STABILITY = "SystemStability"
    FILE_SYSTEM = "FileSystem"
    DEV_ENVIRONMENT = "DevEnvironment"


class ThreatSeverity(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class HealthLevel(IntEnum):
    """Ordinal health verdict; a larger value is worse."""
    UNKNOWN = 0
    OPTIMAL = 1
    DEGRADED = 2
    CRITICAL = 3


class ProtectionLevel(IntEnum):
    """Mitigation aggressiveness and monitoring cadence."""
    MINIMAL = 0
    STANDARD = 1
    AGGRESSIVE = 2
    EMERGENCY = 3

    @classmethod
    def parse(cls, value: str) -> "ProtectionLevel":
        """Parse a case-insensitive level name such as 'standard'."""
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown protection level: {value}")


@dataclass(frozen=True)
class Threat:
    """A single detected adverse condition. Never mutated after creation."""
    category: ThreatCategory
    description: str
    severity: ThreatSeverity
    detected_at: datetime
    mitigation: str
    detector: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "description": self.description,
            "severity": self.severity.name,
            "detected_at": self.detected_at.isoformat(),
            "mitigation": self.mitigation,
            "detector": self.detector,
        }


@dataclass
class HealthReport:
    """Point-in-time health verdict, computed on demand and never persisted."""
    timestamp: datetime
    overall: HealthLevel = HealthLevel.UNKNOWN
    threats: List[Threat] = field(default_factory=list)
    basic_health: HealthLevel = HealthLevel.UNKNOWN
    basic_score: Optional[int] = None
    build_system_health: HealthLevel = HealthLevel.UNKNOWN
    runtime_stability_health: HealthLevel = HealthLevel.UNKNOWN
    recommendations: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    def threats_at_least(self, severity: ThreatSeverity) -> List[Threat]:
        return [t for t in self.threats if t.severity >= severity]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "overall": self.overall.name,
            "basic_health": self.basic_health.name,
            "basic_score": self.basic_score,
            "build_system_health": self.build_system_health.name,
            "runtime_stability_health": self.runtime_stability_health.name,
            "threats": [t.to_dict() for t in self.threats],
            "recommendations": list(self.recommendations),
            "error": self.error_message,
        }


@dataclass
class MonitoringSession:
    """Process-wide protection state, owned by exactly one coordinator."""
    protection_level: ProtectionLevel = ProtectionLevel.STANDARD
    last_report: Optional[HealthReport] = None
    active_mitigations: List[str] = field(default_factory=list)
    active_protections: List[str] = field(default_factory=list)
    monitor: Optional[Any] = None
    initialized: bool = False
    last_full_scan: Optional[datetime] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "protection_level": self.protection_level.name,
            "last_full_scan": self.last_full_scan.isoformat() if self.last_full_scan else None,
            "active_protections": list(self.active_protections),
            "active_mitigations": list(self.active_mitigations),
            "monitoring": bool(self.monitor is not None and self.monitor.is_running),
            "last_health": self.last_report.overall.name if self.last_report else None,
        }
