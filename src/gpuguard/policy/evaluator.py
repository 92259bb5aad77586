"""Policy evaluator — compare observed usage against resolved limits.

``evaluate`` is deterministic and side-effect free: the same snapshot,
history and policy set always produce the same violations and warnings,
ids included.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from datetime import datetime

from gpuguard.detection.detector import overage
from gpuguard.policy.models import (
    Dimension,
    EffectiveLimits,
    GroupPolicy,
    PolicyEvaluation,
    PolicyWarning,
    Severity,
    Violation,
    ViolationKind,
    WarningKind,
)
from gpuguard.policy.store import PolicySet
from gpuguard.snapshot.models import HistoryWindow, ProcessRecord, Snapshot

logger = logging.getLogger(__name__)

_VIOLATION_KINDS = {
    Dimension.MEMORY: ViolationKind.MEMORY_LIMIT_EXCEEDED,
    Dimension.UTILIZATION: ViolationKind.UTILIZATION_LIMIT_EXCEEDED,
    Dimension.DURATION: ViolationKind.DURATION_LIMIT_EXCEEDED,
    Dimension.PROCESSES: ViolationKind.TOO_MANY_PROCESSES,
}

_WARNING_KINDS = {
    Dimension.MEMORY: WarningKind.APPROACHING_MEMORY_LIMIT,
    Dimension.UTILIZATION: WarningKind.APPROACHING_UTILIZATION_LIMIT,
    Dimension.DURATION: WarningKind.APPROACHING_DURATION_LIMIT,
    Dimension.PROCESSES: WarningKind.APPROACHING_PROCESS_LIMIT,
}

_UNITS = {
    Dimension.MEMORY: "GB",
    Dimension.UTILIZATION: "%",
    Dimension.DURATION: "h",
    Dimension.PROCESSES: " processes",
}


def make_id(*parts: object) -> str:
    """Stable short id derived from the identifying fields of a finding."""
    raw = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


def evaluate(
    snapshot: Snapshot,
    history: HistoryWindow | None,
    policies: PolicySet,
) -> PolicyEvaluation:
    """Evaluate every (user, GPU) pair and every group in ``snapshot``.

    Raises SnapshotError if the snapshot is malformed.
    """
    snapshot.validate()
    past = (
        history.before(snapshot.timestamp)
        if history is not None
        else HistoryWindow()
    )
    run = _Evaluation(snapshot, past, policies)

    pairs: dict[tuple[str, int], list[ProcessRecord]] = defaultdict(list)
    for record in snapshot.processes:
        pairs[(record.user, record.gpu_index)].append(record)

    for (user, gpu_index), records in sorted(pairs.items()):
        limits = policies.resolve(user, gpu_index, snapshot.timestamp)
        run.check_pair(user, gpu_index, records, limits)

    for _, group in sorted(policies.groups.items()):
        run.check_group(group)

    result = PolicyEvaluation(
        timestamp=snapshot.timestamp,
        host=snapshot.host,
        violations=tuple(run.violations),
        warnings=tuple(run.warnings),
    )
    logger.info(
        "Policy evaluation of %s: %d violation(s), %d warning(s) across %d pair(s)",
        snapshot.host,
        len(result.violations),
        len(result.warnings),
        len(pairs),
    )
    return result


class _Evaluation:
    """Accumulates findings for a single ``evaluate`` call."""

    def __init__(
        self, snapshot: Snapshot, past: HistoryWindow, policies: PolicySet
    ) -> None:
        self.snapshot = snapshot
        self.past = past
        self.settings = policies.settings
        self.violations: list[Violation] = []
        self.warnings: list[PolicyWarning] = []

    @property
    def timestamp(self) -> datetime:
        return self.snapshot.timestamp

    # --- Per (user, GPU) pair ---

    def check_pair(
        self,
        user: str,
        gpu_index: int,
        records: list[ProcessRecord],
        limits: EffectiveLimits,
    ) -> None:
        ordered = sorted(records, key=lambda r: r.pid)

        if limits.maintenance is not None:
            for r in ordered:
                self._violation(
                    user=user,
                    kind=ViolationKind.MAINTENANCE_WINDOW_VIOLATION,
                    severity=Severity.CRITICAL,
                    message=(
                        f"{r.process_name} (pid {r.pid}) running on GPU "
                        f"{gpu_index} during maintenance: {limits.maintenance}"
                    ),
                    gpu_id=gpu_index,
                    process_pid=r.pid,
                    policy_name=f"gpu:{gpu_index}",
                )

        if limits.access_denied is not None:
            for r in ordered:
                self._violation(
                    user=user,
                    kind=ViolationKind.UNAUTHORIZED_GPU_ACCESS,
                    severity=Severity.CRITICAL,
                    message=(
                        f"{r.process_name} (pid {r.pid}): {limits.access_denied}"
                    ),
                    gpu_id=gpu_index,
                    process_pid=r.pid,
                    policy_name=f"gpu:{gpu_index}",
                )

        heaviest = max(ordered, key=lambda r: (r.used_mem_mb, -r.pid))
        durations = {
            r.pid: self.past.duration_hours(r, self.timestamp) for r in ordered
        }
        longest = max(ordered, key=lambda r: (durations[r.pid], -r.pid))
        gpu = self.snapshot.gpu(gpu_index)

        observed = {
            Dimension.MEMORY: sum(r.used_mem_gb for r in ordered),
            Dimension.UTILIZATION: gpu.utilization_pct if gpu is not None else 0.0,
            Dimension.DURATION: durations[longest.pid],
            Dimension.PROCESSES: float(len({r.pid for r in ordered})),
        }

        for dim in Dimension:
            limit = limits.get(dim)
            source = limits.source(dim)
            if dim is Dimension.MEMORY and limits.reserved_memory_gb:
                capacity = limits.reserved_from_gb
                if capacity is None and gpu is not None:
                    capacity = gpu.memory_total_gb
                if capacity is not None:
                    ceiling = max(capacity - limits.reserved_memory_gb, 0.0)
                    if limit is None or ceiling < limit:
                        limit, source = ceiling, f"gpu:{gpu_index}:reserved"
            if limit is None:
                continue
            pid = longest.pid if dim is Dimension.DURATION else heaviest.pid
            self._compare(
                user=user,
                dim=dim,
                observed=observed[dim],
                limit=float(limit),
                gpu_id=gpu_index,
                process_pid=pid,
                policy_name=source,
                label=f"{user} on GPU {gpu_index}",
            )

    # --- Group aggregates ---

    def check_group(self, group: GroupPolicy) -> None:
        in_scope = [
            r
            for r in self.snapshot.processes
            if r.user in group.members and group.covers(r.gpu_index)
        ]
        if not in_scope:
            return

        usage: dict[str, float] = defaultdict(float)
        for r in in_scope:
            usage[r.user] += r.used_mem_gb
        # The member using the most memory is the one held accountable.
        top_user = min(usage, key=lambda u: (-usage[u], u))
        target = max(
            (r for r in in_scope if r.user == top_user),
            key=lambda r: (r.used_mem_mb, -r.pid),
        )
        label = f"group {group.group_name}"
        policy_name = f"group:{group.group_name}"

        if group.total_memory_limit_gb is not None:
            self._compare(
                user=top_user,
                dim=Dimension.MEMORY,
                observed=sum(usage.values()),
                limit=group.total_memory_limit_gb,
                policy_name=policy_name,
                label=label,
                gpu_id=target.gpu_index,
                process_pid=target.pid,
                group=group.group_name,
                violation_kind=ViolationKind.GROUP_MEMORY_LIMIT_EXCEEDED,
                warning_kind=WarningKind.APPROACHING_GROUP_MEMORY_LIMIT,
            )
        if group.max_concurrent_processes is not None:
            self._compare(
                user=top_user,
                dim=Dimension.PROCESSES,
                observed=float(len({r.pid for r in in_scope})),
                limit=float(group.max_concurrent_processes),
                policy_name=policy_name,
                label=label,
                gpu_id=target.gpu_index,
                process_pid=target.pid,
                group=group.group_name,
                violation_kind=ViolationKind.GROUP_PROCESS_LIMIT_EXCEEDED,
            )

    # --- Shared comparison ---

    def _compare(
        self,
        user: str,
        dim: Dimension,
        observed: float,
        limit: float,
        policy_name: str,
        label: str,
        gpu_id: int | None = None,
        process_pid: int | None = None,
        group: str | None = None,
        violation_kind: ViolationKind | None = None,
        warning_kind: WarningKind | None = None,
    ) -> None:
        unit = _UNITS[dim]
        if observed > limit:
            buckets = self.settings.severity_buckets
            severity = buckets.classify(overage(observed, limit))
            self._violation(
                user=user,
                kind=violation_kind or _VIOLATION_KINDS[dim],
                severity=severity,
                message=(
                    f"{label}: {dim.value} {observed:.1f}{unit} exceeds "
                    f"limit {limit:.1f}{unit}"
                ),
                gpu_id=gpu_id,
                process_pid=process_pid,
                observed=observed,
                limit=limit,
                policy_name=policy_name,
                group=group,
            )
        elif limit > 0 and observed >= self.settings.warning_margin * limit:
            kind = warning_kind or _WARNING_KINDS[dim]
            self.warnings.append(
                PolicyWarning(
                    id=make_id(
                        "warning",
                        self.timestamp.isoformat(),
                        self.snapshot.host,
                        kind.value,
                        user,
                        gpu_id,
                        group,
                    ),
                    timestamp=self.timestamp,
                    user=user,
                    kind=kind,
                    message=(
                        f"{label}: {dim.value} {observed:.1f}{unit} is at "
                        f"{observed / limit:.0%} of limit {limit:.1f}{unit}"
                    ),
                    gpu_id=gpu_id,
                    process_pid=process_pid,
                    observed=observed,
                    limit=limit,
                    policy_name=policy_name,
                    group=group,
                )
            )

    def _violation(
        self,
        user: str,
        kind: ViolationKind,
        severity: Severity,
        message: str,
        gpu_id: int | None = None,
        process_pid: int | None = None,
        observed: float = 0.0,
        limit: float = 0.0,
        policy_name: str = "",
        group: str | None = None,
    ) -> None:
        vid = make_id(
            "violation",
            self.timestamp.isoformat(),
            self.snapshot.host,
            kind.value,
            user,
            gpu_id,
            process_pid,
            group,
        )
        self.violations.append(
            Violation(
                id=vid,
                timestamp=self.timestamp,
                user=user,
                kind=kind,
                severity=severity,
                message=message,
                gpu_id=gpu_id,
                process_pid=process_pid,
                observed=observed,
                limit=limit,
                policy_name=policy_name,
                group=group,
            )
        )
