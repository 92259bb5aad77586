"""Load Snapshot and HistoryWindow objects from YAML/JSON files."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import yaml

from gpuguard.errors import SnapshotError
from gpuguard.snapshot.models import GpuState, HistoryWindow, ProcessRecord, Snapshot


def load_snapshot(path: str | Path) -> Snapshot:
    """Load a single snapshot from a YAML or JSON file."""
    text = Path(path).read_text(encoding="utf-8")
    return load_snapshot_from_string(text)


def load_snapshot_from_string(text: str) -> Snapshot:
    data = _safe_load(text)
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot document must be a mapping")
    return snapshot_from_dict(data)


def load_history(
    paths: list[str | Path] | tuple[str | Path, ...],
    lookback_hours: float = 24.0,
) -> HistoryWindow:
    """Load history from files holding one snapshot or a list of them."""
    snapshots: list[Snapshot] = []
    for path in paths:
        data = _safe_load(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict) and "snapshots" in data:
            data = data["snapshots"]
        if isinstance(data, dict):
            snapshots.append(snapshot_from_dict(data))
        elif isinstance(data, list):
            snapshots.extend(snapshot_from_dict(item) for item in data)
        else:
            raise SnapshotError(f"{path}: history must be a mapping or a list")
    return HistoryWindow.of(snapshots, lookback_hours=lookback_hours)


def _safe_load(text: str) -> object:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SnapshotError(f"Invalid snapshot YAML: {e}") from e


def snapshot_from_dict(data: dict) -> Snapshot:
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot entry must be a mapping")
    try:
        gpus = tuple(_parse_gpu(g) for g in data.get("gpus", []) or [])
        raw_procs = data.get("processes", data.get("procs", [])) or []
        processes = tuple(_parse_process(p) for p in raw_procs)
        return Snapshot(
            host=str(data.get("host", "localhost")),
            timestamp=parse_timestamp(data["timestamp"]),
            gpus=gpus,
            processes=processes,
        )
    except SnapshotError:
        raise
    except KeyError as e:
        raise SnapshotError(f"Snapshot is missing required field {e}") from e
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"Malformed snapshot: {e}") from e


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    return {
        "host": snapshot.host,
        "timestamp": snapshot.timestamp.isoformat(),
        "gpus": [
            {
                "index": g.index,
                "name": g.name,
                "memory_used_mb": g.memory_used_mb,
                "memory_total_mb": g.memory_total_mb,
                "utilization_pct": g.utilization_pct,
                "temperature_c": g.temperature_c,
                "power_w": g.power_w,
            }
            for g in snapshot.gpus
        ],
        "processes": [
            {
                "gpu_index": p.gpu_index,
                "pid": p.pid,
                "user": p.user,
                "process_name": p.process_name,
                "used_mem_mb": p.used_mem_mb,
                "start_time": p.start_time.isoformat() if p.start_time else None,
                "container": p.container,
            }
            for p in snapshot.processes
        ],
    }


def parse_timestamp(value: object) -> datetime:
    """Parse an ISO-8601 string or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_gpu(g: dict) -> GpuState:
    return GpuState(
        index=int(g["index"]),
        name=str(g.get("name", "")),
        memory_used_mb=float(g.get("memory_used_mb", 0)),
        memory_total_mb=float(g["memory_total_mb"]),
        utilization_pct=float(g.get("utilization_pct", 0)),
        temperature_c=float(g.get("temperature_c", 0)),
        power_w=float(g.get("power_w", 0)),
    )


def _parse_process(p: dict) -> ProcessRecord:
    start = p.get("start_time")
    return ProcessRecord(
        gpu_index=int(p["gpu_index"]),
        pid=int(p["pid"]),
        user=str(p.get("user", "unknown")),
        process_name=str(p.get("process_name", p.get("proc_name", "unknown"))),
        used_mem_mb=float(p.get("used_mem_mb", 0)),
        start_time=parse_timestamp(start) if start else None,
        container=p.get("container"),
    )
