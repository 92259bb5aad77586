"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gpuguard.snapshot.models import GpuState, HistoryWindow, ProcessRecord, Snapshot

# A Monday
T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

GPU_TOTAL_MB = 81920.0


def gb(value: float) -> float:
    return value * 1024.0


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def proc() -> Callable[..., ProcessRecord]:
    def _proc(
        pid: int,
        user: str = "alice",
        name: str = "train.py",
        gpu: int = 0,
        mem_gb: float = 1.0,
        container: str | None = None,
    ) -> ProcessRecord:
        return ProcessRecord(
            gpu_index=gpu,
            pid=pid,
            user=user,
            process_name=name,
            used_mem_mb=gb(mem_gb),
            container=container,
        )

    return _proc


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    def _make(
        processes: list[ProcessRecord] | tuple[ProcessRecord, ...] = (),
        ts: datetime = T0,
        utilization: dict[int, float] | None = None,
        gpu_count: int = 2,
        host: str = "gpu-node-1",
    ) -> Snapshot:
        utilization = utilization or {}
        gpus = tuple(
            GpuState(
                index=i,
                name="NVIDIA A100-SXM4-80GB",
                memory_used_mb=min(
                    GPU_TOTAL_MB,
                    sum(p.used_mem_mb for p in processes if p.gpu_index == i),
                ),
                memory_total_mb=GPU_TOTAL_MB,
                utilization_pct=utilization.get(i, 0.0),
            )
            for i in range(gpu_count)
        )
        return Snapshot(host=host, timestamp=ts, gpus=gpus, processes=tuple(processes))

    return _make


@pytest.fixture
def miner_history(make_snapshot, proc) -> HistoryWindow:
    """Three earlier ticks with xmrig pinning GPU 1 at 95%."""
    xmrig = proc(4242, user="mallory", name="xmrig", gpu=1, mem_gb=2.0)
    return HistoryWindow.of(
        [
            make_snapshot([xmrig], ts=T0 - timedelta(hours=h), utilization={1: 95.0})
            for h in (3, 2, 1)
        ]
    )
