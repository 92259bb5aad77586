"""Thread-safe policy store with most-restrictive-wins resolution.

Writers go through ``PolicyStore`` which validates each change and swaps in a
new immutable ``PolicySet`` under a lock. Readers take ``view()`` and keep
working on that value while later writes replace it.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from gpuguard.errors import PolicyError
from gpuguard.policy.models import (
    Dimension,
    EffectiveLimits,
    GlobalSettings,
    GpuPolicy,
    GroupLimit,
    GroupPolicy,
    LimitSet,
    TimePolicy,
    TimeWindow,
    UserPolicy,
)

logger = logging.getLogger(__name__)


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class PolicySet:
    """Immutable view of every policy plus the evaluation-wide settings."""

    users: Mapping[str, UserPolicy] = field(default_factory=_frozen)
    groups: Mapping[str, GroupPolicy] = field(default_factory=_frozen)
    gpus: Mapping[int, GpuPolicy] = field(default_factory=_frozen)
    time_policies: Mapping[str, TimePolicy] = field(default_factory=_frozen)
    settings: GlobalSettings = field(default_factory=GlobalSettings)

    @classmethod
    def of(
        cls,
        users: list[UserPolicy] | tuple[UserPolicy, ...] = (),
        groups: list[GroupPolicy] | tuple[GroupPolicy, ...] = (),
        gpus: list[GpuPolicy] | tuple[GpuPolicy, ...] = (),
        time_policies: list[TimePolicy] | tuple[TimePolicy, ...] = (),
        settings: GlobalSettings | None = None,
    ) -> PolicySet:
        """Build a validated set from plain sequences of policies."""
        policy_set = cls(
            users=_frozen({p.username: p for p in users}),
            groups=_frozen({p.group_name: p for p in groups}),
            gpus=_frozen({p.gpu_index: p for p in gpus}),
            time_policies=_frozen({p.name: p for p in time_policies}),
            settings=settings or GlobalSettings(),
        )
        return policy_set.validate()

    def validate(self) -> PolicySet:
        for p in self.users.values():
            validate_user_policy(p)
        for g in self.groups.values():
            validate_group_policy(g)
        for gp in self.gpus.values():
            validate_gpu_policy(gp)
        for tp in self.time_policies.values():
            validate_time_policy(tp)
        validate_settings(self.settings)
        return self

    @property
    def counts(self) -> dict[str, int]:
        return {
            "users": len(self.users),
            "groups": len(self.groups),
            "gpus": len(self.gpus),
            "time_policies": len(self.time_policies),
        }

    def active_time_policies(self, timestamp: datetime) -> list[TimePolicy]:
        return [
            tp
            for _, tp in sorted(self.time_policies.items())
            if tp.window.contains(timestamp)
        ]

    def resolve(
        self, user: str, gpu_index: int, timestamp: datetime
    ) -> EffectiveLimits:
        """Combine every applicable policy into one set of limits.

        The smallest limit per dimension wins. A GPU policy that denies the
        user contributes the denial instead of its numeric limits.
        """
        candidates: list[tuple[str, LimitSet]] = []
        access_denied: str | None = None
        maintenance: str | None = None
        reserved = 0.0
        reserved_from: float | None = None

        if not self.settings.default_limits.is_empty:
            candidates.append(("global", self.settings.default_limits))

        user_policy = self.users.get(user)
        if user_policy is not None:
            candidates.append((f"user:{user}", user_policy.limits))
            if gpu_index in user_policy.blocked_gpus:
                access_denied = f"user {user} is blocked from GPU {gpu_index}"
            elif (
                user_policy.allowed_gpus
                and gpu_index not in user_policy.allowed_gpus
            ):
                access_denied = f"user {user} is not allowed on GPU {gpu_index}"

        gpu_policy = self.gpus.get(gpu_index)
        if gpu_policy is not None:
            denial = gpu_policy.denies(user)
            if denial is not None:
                access_denied = access_denied or denial
            else:
                candidates.append((f"gpu:{gpu_index}", _gpu_limits(gpu_policy)))
                reserved = gpu_policy.reserved_memory_gb
                reserved_from = gpu_policy.max_memory_gb
            window = gpu_policy.maintenance_window
            if window is not None and window.contains(timestamp):
                maintenance = gpu_policy.maintenance_message or (
                    f"GPU {gpu_index} is under maintenance"
                )

        for tp in self.active_time_policies(timestamp):
            candidates.append((f"time:{tp.name}", tp.limits))

        groups = tuple(
            GroupLimit(
                group_name=g.group_name,
                members=g.members,
                gpus=g.gpus,
                total_memory_limit_gb=g.total_memory_limit_gb,
                max_concurrent_processes=g.max_concurrent_processes,
            )
            for _, g in sorted(self.groups.items())
            if user in g.members and g.covers(gpu_index)
        )

        values: dict[Dimension, float | None] = {}
        sources: list[tuple[Dimension, str]] = []
        for dim in Dimension:
            best: float | None = None
            best_source = ""
            for source, limits in candidates:
                value = limits.get(dim)
                if value is not None and (best is None or value < best):
                    best, best_source = value, source
            values[dim] = best
            if best is not None:
                sources.append((dim, best_source))

        max_procs = values[Dimension.PROCESSES]
        return EffectiveLimits(
            memory_limit_gb=values[Dimension.MEMORY],
            utilization_limit_pct=values[Dimension.UTILIZATION],
            duration_limit_hours=values[Dimension.DURATION],
            max_concurrent_processes=(
                int(max_procs) if max_procs is not None else None
            ),
            reserved_memory_gb=reserved,
            reserved_from_gb=reserved_from,
            access_denied=access_denied,
            maintenance=maintenance,
            groups=groups,
            sources=tuple(sources),
        )


def _gpu_limits(policy: GpuPolicy) -> LimitSet:
    return LimitSet(
        memory_limit_gb=policy.max_memory_gb,
        utilization_limit_pct=policy.max_utilization_pct,
    )


# --- Validation ---


def _require_name(kind: str, name: str) -> None:
    if not name or not name.strip():
        raise PolicyError(f"{kind} name must not be blank")


def _check_limits(label: str, limits: LimitSet) -> None:
    for dim in Dimension:
        value = limits.get(dim)
        if value is not None and value < 0:
            raise PolicyError(f"{label}: {dim.value} limit must not be negative")
    pct = limits.utilization_limit_pct
    if pct is not None and pct > 100:
        raise PolicyError(f"{label}: utilization limit must be at most 100")


def _check_gpus(label: str, gpus: frozenset[int]) -> None:
    if any(i < 0 for i in gpus):
        raise PolicyError(f"{label}: GPU indices must not be negative")


def validate_window(label: str, window: TimeWindow) -> None:
    if window.start >= window.end:
        raise PolicyError(f"{label}: window start must be before end")
    bad = sorted(d for d in window.days_of_week if not 0 <= d <= 6)
    if bad:
        raise PolicyError(f"{label}: invalid days of week {bad}")


def validate_user_policy(policy: UserPolicy) -> None:
    _require_name("User", policy.username)
    label = f"user policy {policy.username}"
    _check_limits(label, policy.limits)
    _check_gpus(label, policy.allowed_gpus | policy.blocked_gpus)


def validate_group_policy(policy: GroupPolicy) -> None:
    _require_name("Group", policy.group_name)
    label = f"group policy {policy.group_name}"
    if not policy.members:
        raise PolicyError(f"{label}: members must not be empty")
    if any(not m or not m.strip() for m in policy.members):
        raise PolicyError(f"{label}: member names must not be blank")
    _check_limits(
        label,
        LimitSet(
            memory_limit_gb=policy.total_memory_limit_gb,
            max_concurrent_processes=policy.max_concurrent_processes,
        ),
    )
    _check_gpus(label, policy.gpus)


def validate_gpu_policy(policy: GpuPolicy) -> None:
    label = f"GPU policy {policy.gpu_index}"
    if policy.gpu_index < 0:
        raise PolicyError(f"{label}: GPU index must not be negative")
    _check_limits(label, _gpu_limits(policy))
    if policy.reserved_memory_gb < 0:
        raise PolicyError(f"{label}: reserved memory must not be negative")
    cap = policy.max_memory_gb
    if cap is not None and policy.reserved_memory_gb > cap:
        raise PolicyError(f"{label}: reserved memory exceeds max memory")
    if policy.maintenance_window is not None:
        validate_window(label, policy.maintenance_window)


def validate_time_policy(policy: TimePolicy) -> None:
    _require_name("Time policy", policy.name)
    label = f"time policy {policy.name}"
    validate_window(label, policy.window)
    _check_limits(label, policy.limits)


def validate_settings(settings: GlobalSettings) -> None:
    _check_limits("global defaults", settings.default_limits)
    if not 0.0 < settings.warning_margin <= 1.0:
        raise PolicyError("warning_margin must be within (0, 1]")
    b = settings.severity_buckets
    if not 1.0 >= b.critical > b.high > b.medium > 0.0:
        raise PolicyError("severity buckets must be strictly descending in (0, 1]")
    if settings.check_interval_seconds <= 0:
        raise PolicyError("check_interval_seconds must be positive")


class PolicyStore:
    """Single-writer, copy-on-write holder of the current ``PolicySet``."""

    def __init__(self, policies: PolicySet | None = None) -> None:
        self._policies = (policies or PolicySet()).validate()
        self._lock = threading.Lock()

    def view(self) -> PolicySet:
        with self._lock:
            return self._policies

    def resolve(
        self, user: str, gpu_index: int, timestamp: datetime
    ) -> EffectiveLimits:
        return self.view().resolve(user, gpu_index, timestamp)

    def replace(self, policies: PolicySet) -> None:
        policies.validate()
        with self._lock:
            self._policies = policies
        logger.info("Policy set replaced: %s", policies.counts)

    def update_settings(self, settings: GlobalSettings) -> None:
        validate_settings(settings)
        with self._lock:
            self._policies = dataclasses.replace(self._policies, settings=settings)

    # --- User policies ---

    def add_user_policy(self, policy: UserPolicy) -> None:
        validate_user_policy(policy)
        self._put("users", policy.username, policy)

    def remove_user_policy(self, username: str) -> None:
        self._drop("users", username, "user policy")

    # --- Group policies ---

    def add_group_policy(self, policy: GroupPolicy) -> None:
        validate_group_policy(policy)
        self._put("groups", policy.group_name, policy)

    def remove_group_policy(self, group_name: str) -> None:
        self._drop("groups", group_name, "group policy")

    # --- GPU policies ---

    def add_gpu_policy(self, policy: GpuPolicy) -> None:
        validate_gpu_policy(policy)
        self._put("gpus", policy.gpu_index, policy)

    def remove_gpu_policy(self, gpu_index: int) -> None:
        self._drop("gpus", gpu_index, "GPU policy")

    # --- Time policies ---

    def add_time_policy(self, policy: TimePolicy) -> None:
        validate_time_policy(policy)
        self._put("time_policies", policy.name, policy)

    def remove_time_policy(self, name: str) -> None:
        self._drop("time_policies", name, "time policy")

    def _put(self, attr: str, key: object, policy: object) -> None:
        with self._lock:
            updated = dict(getattr(self._policies, attr))
            updated[key] = policy
            self._policies = dataclasses.replace(
                self._policies, **{attr: _frozen(updated)}
            )
        logger.debug("Stored %s policy %s", attr, key)

    def _drop(self, attr: str, key: object, kind: str) -> None:
        with self._lock:
            current = getattr(self._policies, attr)
            if key not in current:
                raise PolicyError(f"Unknown {kind}: {key}")
            updated = {k: v for k, v in current.items() if k != key}
            self._policies = dataclasses.replace(
                self._policies, **{attr: _frozen(updated)}
            )
        logger.debug("Removed %s %s", kind, key)
