"""Enforcement modes, intents and the guard status view."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from gpuguard.policy.models import PolicyWarning, Severity, Violation


class Mode(enum.Enum):
    DRY_RUN = "dry_run"
    ENFORCING = "enforcing"


class EnforcementAction(enum.Enum):
    """What would be done to a violating process, mildest first."""

    WARN = "warn"
    SOFT_NOTIFY = "soft_notify"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class EnforcementConfig:
    """Initial coordinator state as read from the guard config file."""

    enabled: bool = True
    mode: Mode = Mode.DRY_RUN
    soft_enforcement: bool = True
    hard_enforcement: bool = False
    recent_capacity: int = 50


@dataclass(frozen=True)
class EnforcementTarget:
    user: str
    gpu_id: int | None = None
    process_pid: int | None = None


@dataclass(frozen=True)
class EnforcementIntent:
    """An action the executor should take, or would take if ``simulated``."""

    action: EnforcementAction
    target: EnforcementTarget
    violation_id: str
    severity: Severity
    reason: str
    simulated: bool = True


@dataclass(frozen=True)
class GuardStatus:
    """Point-in-time copy of the coordinator's state."""

    enabled: bool
    mode: Mode
    soft_enforcement: bool
    hard_enforcement: bool
    cycles: int = 0
    total_violations: int = 0
    total_warnings: int = 0
    total_intents: int = 0
    last_check: datetime | None = None
    recent_violations: tuple[Violation, ...] = ()
    recent_warnings: tuple[PolicyWarning, ...] = ()
    violations_by_severity: dict[str, int] = field(default_factory=dict)
    policy_counts: dict[str, int] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.mode is Mode.DRY_RUN


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one evaluation cycle."""

    timestamp: datetime
    enabled: bool
    simulated: bool
    violations: tuple[Violation, ...] = ()
    warnings: tuple[PolicyWarning, ...] = ()
    intents: tuple[EnforcementIntent, ...] = ()
    dispatched: int = 0
