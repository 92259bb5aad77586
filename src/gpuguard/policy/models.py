"""Policy data models — immutable dataclasses used across the entire codebase.

Four policy kinds overlay each other: user, group, GPU and time window.
Every numeric limit is optional; ``None`` means the dimension is not
constrained by that policy.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, time


class Severity(enum.Enum):
    """Violation severity, from LOW up to CRITICAL."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ViolationKind(enum.Enum):
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    UTILIZATION_LIMIT_EXCEEDED = "utilization_limit_exceeded"
    DURATION_LIMIT_EXCEEDED = "duration_limit_exceeded"
    TOO_MANY_PROCESSES = "too_many_processes"
    GROUP_MEMORY_LIMIT_EXCEEDED = "group_memory_limit_exceeded"
    GROUP_PROCESS_LIMIT_EXCEEDED = "group_process_limit_exceeded"
    UNAUTHORIZED_GPU_ACCESS = "unauthorized_gpu_access"
    MAINTENANCE_WINDOW_VIOLATION = "maintenance_window_violation"


class WarningKind(enum.Enum):
    APPROACHING_MEMORY_LIMIT = "approaching_memory_limit"
    APPROACHING_UTILIZATION_LIMIT = "approaching_utilization_limit"
    APPROACHING_DURATION_LIMIT = "approaching_duration_limit"
    APPROACHING_PROCESS_LIMIT = "approaching_process_limit"
    APPROACHING_GROUP_MEMORY_LIMIT = "approaching_group_memory_limit"


class Dimension(enum.Enum):
    """A resource dimension a limit can constrain."""

    MEMORY = "memory"
    UTILIZATION = "utilization"
    DURATION = "duration"
    PROCESSES = "processes"


@dataclass(frozen=True)
class TimeWindow:
    """Days of week (0=Sunday … 6=Saturday, empty = every day) and [start, end)."""

    start: time
    end: time
    days_of_week: frozenset[int] = frozenset()

    def contains(self, ts: datetime) -> bool:
        if self.days_of_week and (ts.weekday() + 1) % 7 not in self.days_of_week:
            return False
        now = ts.timetz().replace(tzinfo=None)
        return self.start <= now < self.end


@dataclass(frozen=True)
class LimitSet:
    """Optional per-dimension limits shared by user, time and global policies."""

    memory_limit_gb: float | None = None
    utilization_limit_pct: float | None = None
    duration_limit_hours: float | None = None
    max_concurrent_processes: int | None = None

    def get(self, dimension: Dimension) -> float | None:
        return {
            Dimension.MEMORY: self.memory_limit_gb,
            Dimension.UTILIZATION: self.utilization_limit_pct,
            Dimension.DURATION: self.duration_limit_hours,
            Dimension.PROCESSES: self.max_concurrent_processes,
        }[dimension]

    @property
    def is_empty(self) -> bool:
        return all(self.get(d) is None for d in Dimension)


@dataclass(frozen=True)
class UserPolicy:
    username: str
    limits: LimitSet = field(default_factory=LimitSet)
    allowed_gpus: frozenset[int] = frozenset()
    blocked_gpus: frozenset[int] = frozenset()
    description: str = ""


@dataclass(frozen=True)
class GroupPolicy:
    """Aggregate limits across every member's usage.

    ``gpus`` restricts which GPUs count towards the aggregate; empty means
    every GPU on the host.
    """

    group_name: str
    members: frozenset[str]
    total_memory_limit_gb: float | None = None
    max_concurrent_processes: int | None = None
    gpus: frozenset[int] = frozenset()
    description: str = ""

    def covers(self, gpu_index: int) -> bool:
        return not self.gpus or gpu_index in self.gpus


@dataclass(frozen=True)
class GpuPolicy:
    gpu_index: int
    max_memory_gb: float | None = None
    max_utilization_pct: float | None = None
    reserved_memory_gb: float = 0.0
    allowed_users: frozenset[str] = frozenset()
    blocked_users: frozenset[str] = frozenset()
    maintenance_window: TimeWindow | None = None
    maintenance_message: str = ""

    def denies(self, user: str) -> str | None:
        """Reason the user may not use this GPU at all, or None."""
        if user in self.blocked_users:
            return f"user {user} is blocked from GPU {self.gpu_index}"
        if self.allowed_users and user not in self.allowed_users:
            return f"user {user} is not allowed on GPU {self.gpu_index}"
        return None


@dataclass(frozen=True)
class TimePolicy:
    """Extra limits active for everyone during a recurring time window."""

    name: str
    window: TimeWindow
    limits: LimitSet = field(default_factory=LimitSet)
    description: str = ""


@dataclass(frozen=True)
class SeverityBuckets:
    """Normalized-overage cut points mapping a breach to a Severity."""

    critical: float = 0.75
    high: float = 0.5
    medium: float = 0.25

    def classify(self, overage: float) -> Severity:
        if overage >= self.critical:
            return Severity.CRITICAL
        if overage >= self.high:
            return Severity.HIGH
        if overage >= self.medium:
            return Severity.MEDIUM
        return Severity.LOW


@dataclass(frozen=True)
class GlobalSettings:
    """Evaluation-wide settings and optional baseline limits for every user.

    ``default_limits`` is empty by default: a user with no policy of any kind
    is unconstrained.
    """

    default_limits: LimitSet = field(default_factory=LimitSet)
    warning_margin: float = 0.8
    severity_buckets: SeverityBuckets = field(default_factory=SeverityBuckets)
    check_interval_seconds: int = 60


@dataclass(frozen=True)
class GroupLimit:
    """A group's aggregate constraint as carried in resolved limits."""

    group_name: str
    members: frozenset[str]
    gpus: frozenset[int]
    total_memory_limit_gb: float | None
    max_concurrent_processes: int | None


@dataclass(frozen=True)
class EffectiveLimits:
    """Most-restrictive combination of every policy applying to one context.

    ``None`` on a dimension means unconstrained. ``sources`` names the policy
    that set each constrained dimension.

    ``reserved_from_gb`` is the capacity the reservation is taken out of, or
    ``None`` for the GPU's hardware total.
    """

    memory_limit_gb: float | None = None
    utilization_limit_pct: float | None = None
    duration_limit_hours: float | None = None
    max_concurrent_processes: int | None = None
    reserved_memory_gb: float = 0.0
    reserved_from_gb: float | None = None
    access_denied: str | None = None
    maintenance: str | None = None
    groups: tuple[GroupLimit, ...] = ()
    sources: tuple[tuple[Dimension, str], ...] = ()

    def get(self, dimension: Dimension) -> float | None:
        return {
            Dimension.MEMORY: self.memory_limit_gb,
            Dimension.UTILIZATION: self.utilization_limit_pct,
            Dimension.DURATION: self.duration_limit_hours,
            Dimension.PROCESSES: self.max_concurrent_processes,
        }[dimension]

    def source(self, dimension: Dimension) -> str:
        for dim, name in self.sources:
            if dim is dimension:
                return name
        return ""

    @property
    def is_unconstrained(self) -> bool:
        return (
            all(self.get(d) is None for d in Dimension)
            and not self.reserved_memory_gb
            and self.access_denied is None
            and self.maintenance is None
            and not self.groups
        )


@dataclass(frozen=True)
class Violation:
    """An actionable policy breach."""

    id: str
    timestamp: datetime
    user: str
    kind: ViolationKind
    severity: Severity
    message: str
    gpu_id: int | None = None
    process_pid: int | None = None
    observed: float = 0.0
    limit: float = 0.0
    policy_name: str = ""
    group: str | None = None


@dataclass(frozen=True)
class PolicyWarning:
    """A near-breach. Informational, never an enforcement trigger."""

    id: str
    timestamp: datetime
    user: str
    kind: WarningKind
    message: str
    gpu_id: int | None = None
    process_pid: int | None = None
    observed: float = 0.0
    limit: float = 0.0
    policy_name: str = ""
    group: str | None = None


@dataclass(frozen=True)
class PolicyEvaluation:
    timestamp: datetime
    host: str = ""
    violations: tuple[Violation, ...] = ()
    warnings: tuple[PolicyWarning, ...] = ()
