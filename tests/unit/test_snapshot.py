"""Tests for snapshot models, the history window and the snapshot loader."""

from __future__ import annotations

from datetime import timedelta

import pytest

from gpuguard.errors import SnapshotError
from gpuguard.snapshot.loader import (
    load_history,
    load_snapshot,
    load_snapshot_from_string,
    parse_timestamp,
    snapshot_from_dict,
    snapshot_to_dict,
)
from gpuguard.snapshot.models import GpuState, HistoryWindow, Snapshot


def _gpu(index: int = 0, used: float = 0.0, total: float = 1024.0, util: float = 0.0):
    return GpuState(
        index=index,
        name="test",
        memory_used_mb=used,
        memory_total_mb=total,
        utilization_pct=util,
    )


def test_valid_snapshot(make_snapshot, proc):
    snap = make_snapshot([proc(1), proc(2, gpu=1)])
    snap.validate()
    assert snap.gpu(1).index == 1
    assert snap.gpu(7) is None


@pytest.mark.parametrize(
    "gpus",
    [
        (_gpu(0), _gpu(0)),
        (_gpu(total=0.0),),
        (_gpu(used=-1.0),),
        (_gpu(used=2048.0, total=1024.0),),
        (_gpu(util=101.0),),
    ],
)
def test_invalid_gpu_state_rejected(t0, gpus):
    with pytest.raises(SnapshotError):
        Snapshot(host="h", timestamp=t0, gpus=gpus).validate()


def test_dangling_gpu_index_rejected(make_snapshot, proc):
    snap = make_snapshot([proc(1, gpu=5)])
    with pytest.raises(SnapshotError, match="unknown GPU 5"):
        snap.validate()


def test_pid_zero_rejected(make_snapshot, proc):
    with pytest.raises(SnapshotError, match="invalid pid 0"):
        make_snapshot([proc(0)]).validate()


def test_snapshot_error_is_value_error(make_snapshot, proc):
    with pytest.raises(ValueError):
        make_snapshot([proc(1, gpu=5)]).validate()


def test_history_expires_by_timestamp(make_snapshot, t0):
    window = HistoryWindow(lookback_hours=2.0)
    for hours in (5, 3, 1, 0):
        window.append(make_snapshot(ts=t0 - timedelta(hours=hours)))
    assert [s.timestamp for s in window] == [
        t0 - timedelta(hours=1),
        t0,
    ]


def test_history_is_append_only(make_snapshot, t0):
    window = HistoryWindow()
    window.append(make_snapshot(ts=t0))
    with pytest.raises(SnapshotError, match="append-only"):
        window.append(make_snapshot(ts=t0 - timedelta(minutes=1)))


def test_history_before_excludes_current_tick(make_snapshot, t0):
    window = HistoryWindow.of(
        [make_snapshot(ts=t0), make_snapshot(ts=t0 - timedelta(hours=1))]
    )
    past = window.before(t0)
    assert len(past) == 1
    assert len(window) == 2


def test_duration_of_never_seen_process_is_zero(miner_history, proc, t0):
    stranger = proc(9999, gpu=0)
    assert miner_history.duration_hours(stranger, t0) == 0.0


def test_duration_from_first_sighting(miner_history, proc, t0):
    xmrig = proc(4242, user="mallory", name="xmrig", gpu=1)
    assert miner_history.duration_hours(xmrig, t0) == pytest.approx(3.0)


def test_utilization_and_memory_samples(miner_history):
    assert miner_history.gpu_utilization_samples(4242, 1) == [95.0, 95.0, 95.0]
    assert miner_history.gpu_utilization_samples(4242, 0) == []
    assert miner_history.user_memory_samples("mallory") == [2048.0] * 3
    assert miner_history.user_memory_samples("nobody") == []


def test_lookback_must_be_positive():
    with pytest.raises(SnapshotError):
        HistoryWindow(lookback_hours=0)


def test_load_snapshot_file(fixtures_dir):
    snap = load_snapshot(fixtures_dir / "snapshot_miner.yaml")
    assert snap.host == "gpu-node-1"
    assert snap.timestamp.tzinfo is not None
    assert len(snap.gpus) == 2
    assert {p.process_name for p in snap.processes} == {"python3", "xmrig"}


def test_load_snapshot_accepts_short_keys(fixtures_dir):
    snap = load_snapshot(fixtures_dir / "snapshot_usage.yaml")
    assert [p.process_name for p in snap.processes][0] == "train.py"
    assert len(snap.processes) == 4


def test_load_history_list(fixtures_dir):
    window = load_history([fixtures_dir / "history_miner.yaml"])
    assert len(window) == 3
    assert window.snapshots[0].timestamp < window.snapshots[-1].timestamp


def test_missing_field_is_snapshot_error():
    with pytest.raises(SnapshotError, match="timestamp"):
        snapshot_from_dict({"host": "h", "gpus": []})


def test_malformed_yaml_is_snapshot_error():
    with pytest.raises(SnapshotError):
        load_snapshot_from_string("host: [unclosed")


def test_non_mapping_document_rejected():
    with pytest.raises(SnapshotError, match="mapping"):
        load_snapshot_from_string("- just\n- a list\n")


def test_snapshot_dict_round_trip(fixtures_dir):
    snap = load_snapshot(fixtures_dir / "snapshot_miner.yaml")
    assert snapshot_from_dict(snapshot_to_dict(snap)) == snap


def test_parse_timestamp_variants():
    assert parse_timestamp("2024-01-15T12:00:00Z").utcoffset() == timedelta(0)
    assert parse_timestamp("2024-01-15T12:00:00").tzinfo is not None
    assert parse_timestamp(0).year == 1970
