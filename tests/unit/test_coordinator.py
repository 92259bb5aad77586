"""Tests for the enforcement coordinator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gpuguard.enforcement.coordinator import EnforcementCoordinator, action_for
from gpuguard.enforcement.models import EnforcementAction, EnforcementConfig, Mode
from gpuguard.errors import ConfigError
from gpuguard.policy.models import (
    PolicyEvaluation,
    PolicyWarning,
    Severity,
    Violation,
    ViolationKind,
    WarningKind,
)

T0 = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _violation(n: int, severity: Severity = Severity.LOW) -> Violation:
    return Violation(
        id=f"v{n}",
        timestamp=T0,
        user="alice",
        kind=ViolationKind.MEMORY_LIMIT_EXCEEDED,
        severity=severity,
        message=f"violation {n}",
        gpu_id=0,
        process_pid=1000 + n,
    )


def _warning(n: int) -> PolicyWarning:
    return PolicyWarning(
        id=f"w{n}",
        timestamp=T0,
        user="alice",
        kind=WarningKind.APPROACHING_MEMORY_LIMIT,
        message=f"warning {n}",
    )


def _evaluation(*severities: Severity, warnings: int = 0) -> PolicyEvaluation:
    return PolicyEvaluation(
        timestamp=T0,
        host="gpu-node-1",
        violations=tuple(_violation(i, s) for i, s in enumerate(severities)),
        warnings=tuple(_warning(i) for i in range(warnings)),
    )


ALL = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)


def test_action_mapping():
    assert action_for(Severity.LOW) is EnforcementAction.WARN
    assert action_for(Severity.MEDIUM) is EnforcementAction.SOFT_NOTIFY
    assert action_for(Severity.HIGH) is EnforcementAction.TERMINATE
    assert action_for(Severity.CRITICAL) is EnforcementAction.TERMINATE


def test_dry_run_simulates_everything():
    coordinator = EnforcementCoordinator(
        EnforcementConfig(mode=Mode.DRY_RUN, soft_enforcement=False)
    )
    result = coordinator.process(_evaluation(*ALL))

    assert result.simulated
    assert len(result.intents) == 4
    assert all(i.simulated for i in result.intents)
    assert [i.action for i in result.intents] == [
        EnforcementAction.WARN,
        EnforcementAction.SOFT_NOTIFY,
        EnforcementAction.TERMINATE,
        EnforcementAction.TERMINATE,
    ]


def test_enforcing_soft_only():
    coordinator = EnforcementCoordinator(
        EnforcementConfig(
            mode=Mode.ENFORCING, soft_enforcement=True, hard_enforcement=False
        )
    )
    result = coordinator.process(_evaluation(*ALL))

    assert not result.simulated
    assert [i.action for i in result.intents] == [
        EnforcementAction.WARN,
        EnforcementAction.SOFT_NOTIFY,
    ]
    assert not any(i.simulated for i in result.intents)


def test_enforcing_hard_only():
    coordinator = EnforcementCoordinator(
        EnforcementConfig(
            mode=Mode.ENFORCING, soft_enforcement=False, hard_enforcement=True
        )
    )
    result = coordinator.process(_evaluation(*ALL))
    assert [i.action for i in result.intents] == [
        EnforcementAction.TERMINATE,
        EnforcementAction.TERMINATE,
    ]
    assert result.intents[0].target.process_pid == 1002


def test_warnings_never_produce_intents():
    coordinator = EnforcementCoordinator(
        EnforcementConfig(mode=Mode.ENFORCING, hard_enforcement=True)
    )
    result = coordinator.process(_evaluation(warnings=3))
    assert result.intents == ()
    assert len(result.warnings) == 3


def test_intent_carries_violation():
    coordinator = EnforcementCoordinator()
    intent = coordinator.process(_evaluation(Severity.MEDIUM)).intents[0]
    assert intent.violation_id == "v0"
    assert intent.severity is Severity.MEDIUM
    assert intent.reason == "violation 0"
    assert intent.target.user == "alice"
    assert intent.target.gpu_id == 0


def test_toggle_applies_to_next_cycle():
    coordinator = EnforcementCoordinator(EnforcementConfig(hard_enforcement=True))
    assert coordinator.process(_evaluation(Severity.HIGH)).intents[0].simulated

    assert coordinator.toggle_dry_run() is Mode.ENFORCING
    assert not coordinator.process(_evaluation(Severity.HIGH)).intents[0].simulated

    assert coordinator.toggle_dry_run() is Mode.DRY_RUN
    assert coordinator.status().dry_run


def test_set_mode_and_flags():
    coordinator = EnforcementCoordinator()
    coordinator.set_mode(Mode.ENFORCING)
    coordinator.set_soft_enforcement(False)
    coordinator.set_hard_enforcement(True)
    coordinator.set_enabled(False)

    status = coordinator.status()
    assert status.mode is Mode.ENFORCING
    assert not status.soft_enforcement
    assert status.hard_enforcement
    assert not status.enabled
    assert not coordinator.enabled


def test_ring_buffer_capacity():
    coordinator = EnforcementCoordinator(EnforcementConfig(recent_capacity=3))
    for _ in range(2):
        coordinator.process(_evaluation(Severity.LOW, Severity.LOW, warnings=2))

    status = coordinator.status()
    assert len(status.recent_violations) == 3
    assert len(status.recent_warnings) == 3
    assert status.total_violations == 4
    assert status.total_warnings == 4
    assert status.cycles == 2


def test_counters_and_severity_breakdown():
    coordinator = EnforcementCoordinator()
    coordinator.process(_evaluation(Severity.LOW, Severity.CRITICAL, Severity.LOW))

    status = coordinator.status()
    assert status.violations_by_severity == {"low": 2, "critical": 1}
    assert status.total_intents == 3
    assert status.last_check == T0


def test_force_dry_run_leaves_state_untouched():
    coordinator = EnforcementCoordinator(
        EnforcementConfig(mode=Mode.ENFORCING, hard_enforcement=True)
    )
    result = coordinator.process(_evaluation(Severity.CRITICAL), force_dry_run=True)

    assert result.simulated
    assert result.intents[0].simulated
    status = coordinator.status()
    assert status.cycles == 0
    assert status.recent_violations == ()
    assert status.mode is Mode.ENFORCING


def test_status_is_a_copy():
    coordinator = EnforcementCoordinator()
    before = coordinator.status()
    coordinator.process(_evaluation(Severity.HIGH))
    coordinator.set_mode(Mode.ENFORCING)

    assert before.cycles == 0
    assert before.recent_violations == ()
    assert before.mode is Mode.DRY_RUN
    assert before.last_check is None


def test_last_check_tracks_latest_cycle():
    coordinator = EnforcementCoordinator()
    later = PolicyEvaluation(timestamp=T0 + timedelta(minutes=5))
    coordinator.process(_evaluation())
    coordinator.process(later)
    assert coordinator.status().last_check == T0 + timedelta(minutes=5)


def test_zero_capacity_rejected():
    with pytest.raises(ConfigError):
        EnforcementCoordinator(EnforcementConfig(recent_capacity=0))
