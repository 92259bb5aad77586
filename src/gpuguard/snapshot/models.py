"""GPU state and process records observed at one instant.

A ``Snapshot`` is produced once per monitoring tick by the polling
collaborator. ``HistoryWindow`` keeps the recent snapshots so the engine can
derive quantities a single tick cannot express (process duration, sustained
utilization, per-user baselines).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from gpuguard.errors import SnapshotError

logger = logging.getLogger(__name__)

MB_PER_GB = 1024.0


@dataclass(frozen=True)
class GpuState:
    """Hardware state of one GPU."""

    index: int
    name: str
    memory_used_mb: float
    memory_total_mb: float
    utilization_pct: float = 0.0
    temperature_c: float = 0.0
    power_w: float = 0.0

    @property
    def memory_total_gb(self) -> float:
        return self.memory_total_mb / MB_PER_GB


@dataclass(frozen=True)
class ProcessRecord:
    """A process using one GPU. Identity is (pid, gpu_index)."""

    gpu_index: int
    pid: int
    user: str
    process_name: str
    used_mem_mb: float
    start_time: datetime | None = None
    container: str | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.pid, self.gpu_index)

    @property
    def used_mem_gb(self) -> float:
        return self.used_mem_mb / MB_PER_GB


@dataclass(frozen=True)
class Snapshot:
    """All GPUs and GPU-using processes on a host at one instant."""

    host: str
    timestamp: datetime
    gpus: tuple[GpuState, ...] = ()
    processes: tuple[ProcessRecord, ...] = ()

    def gpu(self, index: int) -> GpuState | None:
        for gpu in self.gpus:
            if gpu.index == index:
                return gpu
        return None

    def validate(self) -> None:
        """Raise SnapshotError if the snapshot breaks any model invariant."""
        seen: set[int] = set()
        for gpu in self.gpus:
            if gpu.index in seen:
                raise SnapshotError(
                    f"{self.host}: duplicate GPU index {gpu.index}"
                )
            seen.add(gpu.index)
            if gpu.memory_total_mb <= 0:
                raise SnapshotError(
                    f"{self.host}: GPU {gpu.index} has non-positive total memory"
                )
            if gpu.memory_used_mb < 0:
                raise SnapshotError(
                    f"{self.host}: GPU {gpu.index} has negative memory usage"
                )
            if gpu.memory_used_mb > gpu.memory_total_mb:
                raise SnapshotError(
                    f"{self.host}: GPU {gpu.index} uses more memory than it has "
                    f"({gpu.memory_used_mb} > {gpu.memory_total_mb} MB)"
                )
            if not 0.0 <= gpu.utilization_pct <= 100.0:
                raise SnapshotError(
                    f"{self.host}: GPU {gpu.index} utilization "
                    f"{gpu.utilization_pct} outside [0, 100]"
                )
            if gpu.power_w < 0:
                raise SnapshotError(
                    f"{self.host}: GPU {gpu.index} has negative power draw"
                )

        for proc in self.processes:
            if proc.gpu_index not in seen:
                raise SnapshotError(
                    f"{self.host}: process {proc.pid} refers to unknown "
                    f"GPU {proc.gpu_index}"
                )
            if proc.used_mem_mb < 0:
                raise SnapshotError(
                    f"{self.host}: process {proc.pid} has negative memory usage"
                )
            if proc.pid <= 0:
                raise SnapshotError(f"{self.host}: invalid pid {proc.pid}")


@dataclass
class HistoryWindow:
    """Time-ordered snapshots covering the last ``lookback_hours``.

    Entries age out by timestamp relative to the newest entry, never by
    count. ``append`` is the only mutation; the derived queries are
    read-only.
    """

    lookback_hours: float = 24.0
    _snapshots: list[Snapshot] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.lookback_hours <= 0:
            raise SnapshotError("History lookback must be positive")
        entries = sorted(self._snapshots, key=lambda s: s.timestamp)
        self._snapshots = []
        for snapshot in entries:
            self.append(snapshot)

    @classmethod
    def of(
        cls, snapshots: list[Snapshot], lookback_hours: float = 24.0
    ) -> HistoryWindow:
        """Build a window from snapshots in any order."""
        return cls(lookback_hours=lookback_hours, _snapshots=list(snapshots))

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self._snapshots)

    @property
    def snapshots(self) -> tuple[Snapshot, ...]:
        return tuple(self._snapshots)

    def append(self, snapshot: Snapshot) -> None:
        """Add a snapshot and drop entries older than the lookback."""
        snapshot.validate()
        if self._snapshots and snapshot.timestamp < self._snapshots[-1].timestamp:
            raise SnapshotError(
                f"History is append-only: {snapshot.timestamp.isoformat()} is "
                f"older than {self._snapshots[-1].timestamp.isoformat()}"
            )
        self._snapshots.append(snapshot)
        self._expire(snapshot.timestamp)

    def before(self, now: datetime) -> HistoryWindow:
        """Return a copy holding only the lookback strictly before ``now``.

        Callers evaluating the snapshot taken at ``now`` use this so the
        current tick is never counted twice.
        """
        cutoff = now - timedelta(hours=self.lookback_hours)
        kept = [s for s in self._snapshots if cutoff <= s.timestamp < now]
        window = HistoryWindow(lookback_hours=self.lookback_hours)
        window._snapshots = kept
        return window

    def _expire(self, newest: datetime) -> None:
        cutoff = newest - timedelta(hours=self.lookback_hours)
        dropped = 0
        while self._snapshots and self._snapshots[0].timestamp < cutoff:
            self._snapshots.pop(0)
            dropped += 1
        if dropped:
            logger.debug("Expired %d snapshot(s) older than %s", dropped, cutoff)

    # --- Derived quantities ---

    def first_seen(self, pid: int, gpu_index: int) -> datetime | None:
        for snapshot in self._snapshots:
            for proc in snapshot.processes:
                if proc.pid == pid and proc.gpu_index == gpu_index:
                    return snapshot.timestamp
        return None

    def duration_hours(self, record: ProcessRecord, now: datetime) -> float:
        """Hours since the process was first seen; 0.0 if never seen before."""
        first = self.first_seen(record.pid, record.gpu_index)
        if first is None or first > now:
            return 0.0
        return (now - first).total_seconds() / 3600.0

    def gpu_utilization_samples(self, pid: int, gpu_index: int) -> list[float]:
        """Utilization of the process's GPU in every snapshot it appears in."""
        samples: list[float] = []
        for snapshot in self._snapshots:
            if not any(
                p.pid == pid and p.gpu_index == gpu_index for p in snapshot.processes
            ):
                continue
            gpu = snapshot.gpu(gpu_index)
            if gpu is not None:
                samples.append(gpu.utilization_pct)
        return samples

    def user_memory_samples(self, user: str) -> list[float]:
        """Total memory (MB) used by ``user`` in each snapshot they appear in."""
        samples: list[float] = []
        for snapshot in self._snapshots:
            usage = [p.used_mem_mb for p in snapshot.processes if p.user == user]
            if usage:
                samples.append(sum(usage))
        return samples
