"""Threat findings and scan results."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from gpuguard.snapshot.models import ProcessRecord


class RiskLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AbuseType(enum.Enum):
    MEMORY_HOG = "memory_hog"
    LONG_RUNNING = "long_running"
    EXCESSIVE_UTILIZATION = "excessive_utilization"
    UNAUTHORIZED_ACCESS = "unauthorized_access"


class FindingType(enum.Enum):
    CRYPTO_MINER = "crypto_miner"
    SUSPICIOUS_PROCESS = "suspicious_process"
    RESOURCE_ABUSER = "resource_abuser"


@dataclass(frozen=True)
class CryptoMiner:
    """A process scored as a likely cryptocurrency miner."""

    process: ProcessRecord
    confidence: float
    indicators: tuple[str, ...] = ()

    finding_type = FindingType.CRYPTO_MINER

    @property
    def score(self) -> float:
        return self.confidence


@dataclass(frozen=True)
class SuspiciousProcess:
    """A process whose name, owner or usage pattern looks out of place."""

    process: ProcessRecord
    confidence: float
    risk_level: RiskLevel
    reasons: tuple[str, ...] = ()

    finding_type = FindingType.SUSPICIOUS_PROCESS

    @property
    def score(self) -> float:
        return self.confidence


@dataclass(frozen=True)
class ResourceAbuser:
    """A process over a resource threshold on one axis."""

    process: ProcessRecord
    abuse_type: AbuseType
    severity: float
    duration_hours: float = 0.0
    reasons: tuple[str, ...] = ()

    finding_type = FindingType.RESOURCE_ABUSER

    @property
    def score(self) -> float:
        return self.severity


ThreatFinding = CryptoMiner | SuspiciousProcess | ResourceAbuser


@dataclass(frozen=True)
class RogueScanResult:
    """Outcome of one threat scan. Created fresh per scan, never mutated."""

    timestamp: datetime
    host: str = ""
    crypto_miners: tuple[CryptoMiner, ...] = ()
    suspicious_processes: tuple[SuspiciousProcess, ...] = ()
    resource_abusers: tuple[ResourceAbuser, ...] = ()
    risk_score: float = 0.0
    recommendations: tuple[str, ...] = field(default_factory=tuple)

    @property
    def findings(self) -> tuple[ThreatFinding, ...]:
        return self.crypto_miners + self.suspicious_processes + self.resource_abusers

    @property
    def is_clean(self) -> bool:
        return not self.findings
