"""Tests for the policy evaluator."""

from __future__ import annotations

from datetime import time, timedelta

import pytest

from gpuguard.errors import SnapshotError
from gpuguard.policy.evaluator import evaluate
from gpuguard.policy.loader import load_guard_config
from gpuguard.policy.models import (
    GlobalSettings,
    GpuPolicy,
    GroupPolicy,
    LimitSet,
    Severity,
    TimeWindow,
    UserPolicy,
    ViolationKind,
    WarningKind,
)
from gpuguard.policy.store import PolicySet
from gpuguard.snapshot.loader import load_snapshot
from gpuguard.snapshot.models import HistoryWindow


def test_user_memory_limit_exceeded(make_snapshot, proc):
    policies = PolicySet.of(users=[UserPolicy("alice", LimitSet(memory_limit_gb=8.0))])
    snap = make_snapshot([proc(100, user="alice", gpu=0, mem_gb=10.0)])

    result = evaluate(snap, None, policies)

    assert len(result.violations) == 1
    v = result.violations[0]
    assert v.user == "alice"
    assert v.gpu_id == 0
    assert v.kind is ViolationKind.MEMORY_LIMIT_EXCEEDED
    assert v.observed == pytest.approx(10.0)
    assert v.limit == 8.0
    assert v.severity is Severity.MEDIUM
    assert v.policy_name == "user:alice"


def test_memory_sums_processes_on_same_gpu(make_snapshot, proc):
    policies = PolicySet.of(users=[UserPolicy("alice", LimitSet(memory_limit_gb=8.0))])
    snap = make_snapshot(
        [
            proc(100, gpu=0, mem_gb=5.0),
            proc(101, gpu=0, mem_gb=5.0),
            proc(102, gpu=1, mem_gb=5.0),
        ]
    )

    result = evaluate(snap, None, policies)

    assert [(v.gpu_id, v.kind) for v in result.violations] == [
        (0, ViolationKind.MEMORY_LIMIT_EXCEEDED)
    ]


def test_unauthorized_gpu_access_is_critical(make_snapshot, proc):
    policies = PolicySet.of(gpus=[GpuPolicy(1, allowed_users=frozenset({"bob"}))])
    snap = make_snapshot(
        [proc(200, user="carol", gpu=1), proc(201, user="bob", gpu=1)]
    )

    result = evaluate(snap, None, policies)

    assert len(result.violations) == 1
    v = result.violations[0]
    assert v.user == "carol"
    assert v.gpu_id == 1
    assert v.kind is ViolationKind.UNAUTHORIZED_GPU_ACCESS
    assert v.severity is Severity.CRITICAL


def test_group_aggregate_limit(make_snapshot, proc):
    policies = PolicySet.of(
        groups=[
            GroupPolicy(
                "research",
                frozenset({"dave", "erin"}),
                total_memory_limit_gb=32.0,
            )
        ]
    )
    snap = make_snapshot(
        [
            proc(300, user="dave", gpu=0, mem_gb=20.0),
            proc(301, user="erin", gpu=1, mem_gb=15.0),
        ]
    )

    result = evaluate(snap, None, policies)

    assert len(result.violations) == 1
    v = result.violations[0]
    assert v.kind is ViolationKind.GROUP_MEMORY_LIMIT_EXCEEDED
    assert v.group == "research"
    assert v.observed == pytest.approx(35.0)
    assert v.user == "dave"


def test_group_has_no_per_member_sublimit(make_snapshot, proc):
    policies = PolicySet.of(
        groups=[GroupPolicy("research", frozenset({"dave", "erin"}), 32.0)]
    )
    snap = make_snapshot([proc(300, user="dave", mem_gb=30.0)])
    result = evaluate(snap, None, policies)
    assert result.violations == ()
    assert [w.kind for w in result.warnings] == [
        WarningKind.APPROACHING_GROUP_MEMORY_LIMIT
    ]


def test_group_counts_one_process_on_two_gpus_once(make_snapshot, proc):
    policies = PolicySet.of(
        groups=[
            GroupPolicy(
                "research",
                frozenset({"dave"}),
                max_concurrent_processes=1,
            )
        ]
    )
    snap = make_snapshot(
        [proc(300, user="dave", gpu=0), proc(300, user="dave", gpu=1)]
    )
    result = evaluate(snap, None, policies)
    assert result.violations == ()

    snap = make_snapshot(
        [proc(300, user="dave", gpu=0), proc(301, user="dave", gpu=1)]
    )
    result = evaluate(snap, None, policies)
    assert [v.kind for v in result.violations] == [
        ViolationKind.GROUP_PROCESS_LIMIT_EXCEEDED
    ]


def test_warning_near_limit(make_snapshot, proc):
    policies = PolicySet.of(users=[UserPolicy("alice", LimitSet(memory_limit_gb=10.0))])
    snap = make_snapshot([proc(100, mem_gb=9.0)])

    result = evaluate(snap, None, policies)

    assert result.violations == ()
    assert len(result.warnings) == 1
    assert result.warnings[0].kind is WarningKind.APPROACHING_MEMORY_LIMIT


def test_below_margin_is_silent(make_snapshot, proc):
    policies = PolicySet.of(users=[UserPolicy("alice", LimitSet(memory_limit_gb=10.0))])
    result = evaluate(make_snapshot([proc(100, mem_gb=5.0)]), None, policies)
    assert result.violations == ()
    assert result.warnings == ()


def test_no_policies_no_findings(make_snapshot, proc):
    snap = make_snapshot([proc(1, mem_gb=70.0)], utilization={0: 100.0})
    result = evaluate(snap, None, PolicySet())
    assert result.violations == ()
    assert result.warnings == ()


def test_utilization_and_process_count(make_snapshot, proc):
    policies = PolicySet.of(
        users=[
            UserPolicy(
                "alice",
                LimitSet(utilization_limit_pct=50.0, max_concurrent_processes=2),
            )
        ]
    )
    snap = make_snapshot(
        [proc(1), proc(2), proc(3), proc(4)],
        utilization={0: 100.0},
    )

    kinds = {v.kind: v for v in evaluate(snap, None, policies).violations}

    assert kinds[ViolationKind.UTILIZATION_LIMIT_EXCEEDED].severity is Severity.CRITICAL
    assert kinds[ViolationKind.TOO_MANY_PROCESSES].observed == 4.0
    assert kinds[ViolationKind.TOO_MANY_PROCESSES].severity is Severity.CRITICAL


def test_duration_from_history(make_snapshot, proc, t0):
    policies = PolicySet.of(
        users=[UserPolicy("alice", LimitSet(duration_limit_hours=4.0))]
    )
    job = proc(500)
    history = HistoryWindow.of(
        [make_snapshot([job], ts=t0 - timedelta(hours=h)) for h in (5, 3)]
    )

    result = evaluate(make_snapshot([job]), history, policies)

    assert len(result.violations) == 1
    v = result.violations[0]
    assert v.kind is ViolationKind.DURATION_LIMIT_EXCEEDED
    assert v.observed == pytest.approx(5.0)
    assert v.process_pid == 500


def test_reserved_memory_ceiling(make_snapshot, proc):
    # 80 GB card with 72 GB reserved leaves 8 GB for anyone
    policies = PolicySet.of(gpus=[GpuPolicy(0, reserved_memory_gb=72.0)])
    result = evaluate(make_snapshot([proc(1, mem_gb=12.0)]), None, policies)

    assert len(result.violations) == 1
    assert result.violations[0].limit == pytest.approx(8.0)
    assert result.violations[0].policy_name == "gpu:0:reserved"


def test_reserved_memory_comes_out_of_max_memory(make_snapshot, proc):
    # 40 GB cap with 8 GB reserved leaves 32 GB, not 80 - 8
    policies = PolicySet.of(
        gpus=[GpuPolicy(0, max_memory_gb=40.0, reserved_memory_gb=8.0)]
    )
    result = evaluate(make_snapshot([proc(1, mem_gb=36.0)]), None, policies)

    assert len(result.violations) == 1
    assert result.violations[0].kind is ViolationKind.MEMORY_LIMIT_EXCEEDED
    assert result.violations[0].limit == pytest.approx(32.0)
    assert result.violations[0].policy_name == "gpu:0:reserved"

    under = evaluate(make_snapshot([proc(1, mem_gb=30.0)]), None, policies)
    assert under.violations == ()


def test_maintenance_window_violation(make_snapshot, proc):
    policies = PolicySet.of(
        gpus=[GpuPolicy(0, maintenance_window=TimeWindow(time(11), time(13)))]
    )
    snap = make_snapshot([proc(1), proc(2), proc(3, gpu=1)])

    result = evaluate(snap, None, policies)

    assert [(v.kind, v.process_pid) for v in result.violations] == [
        (ViolationKind.MAINTENANCE_WINDOW_VIOLATION, 1),
        (ViolationKind.MAINTENANCE_WINDOW_VIOLATION, 2),
    ]
    assert all(v.severity is Severity.CRITICAL for v in result.violations)


def test_custom_warning_margin(make_snapshot, proc):
    policies = PolicySet.of(
        users=[UserPolicy("alice", LimitSet(memory_limit_gb=10.0))],
        settings=GlobalSettings(warning_margin=0.5),
    )
    result = evaluate(make_snapshot([proc(1, mem_gb=6.0)]), None, policies)
    assert len(result.warnings) == 1


def test_evaluation_is_idempotent(fixtures_dir):
    policies = load_guard_config(fixtures_dir / "policies.yaml").policies
    snap = load_snapshot(fixtures_dir / "snapshot_usage.yaml")

    first = evaluate(snap, None, policies)
    second = evaluate(snap, None, policies)

    assert first == second
    assert [v.id for v in first.violations] == [v.id for v in second.violations]
    assert len({v.id for v in first.violations}) == len(first.violations)


def test_fixture_scenarios(fixtures_dir):
    policies = load_guard_config(fixtures_dir / "policies.yaml").policies
    snap = load_snapshot(fixtures_dir / "snapshot_usage.yaml")

    result = evaluate(snap, None, policies)

    found = {(v.user, v.kind) for v in result.violations}
    assert found == {
        ("alice", ViolationKind.MEMORY_LIMIT_EXCEEDED),
        ("carol", ViolationKind.UNAUTHORIZED_GPU_ACCESS),
        ("dave", ViolationKind.GROUP_MEMORY_LIMIT_EXCEEDED),
    }


def test_malformed_snapshot_raises(make_snapshot, proc):
    with pytest.raises(SnapshotError):
        evaluate(make_snapshot([proc(1, gpu=4)]), None, PolicySet())
