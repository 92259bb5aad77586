"""Enforcement coordinator — turns violations into intents under the current mode.

The coordinator is the single owner of mode state and of the recent
violation/warning ring buffers. Toggles only change configuration; they take
effect at the start of the next ``process`` call.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, deque
from datetime import datetime

from gpuguard.enforcement.models import (
    CheckResult,
    EnforcementAction,
    EnforcementConfig,
    EnforcementIntent,
    EnforcementTarget,
    GuardStatus,
    Mode,
)
from gpuguard.errors import ConfigError
from gpuguard.policy.models import (
    PolicyEvaluation,
    PolicyWarning,
    Severity,
    Violation,
)

logger = logging.getLogger(__name__)

_ACTIONS = {
    Severity.LOW: EnforcementAction.WARN,
    Severity.MEDIUM: EnforcementAction.SOFT_NOTIFY,
    Severity.HIGH: EnforcementAction.TERMINATE,
    Severity.CRITICAL: EnforcementAction.TERMINATE,
}

_SOFT = frozenset({EnforcementAction.WARN, EnforcementAction.SOFT_NOTIFY})


def action_for(severity: Severity) -> EnforcementAction:
    """The action full enforcement takes for a violation of ``severity``."""
    return _ACTIONS[severity]


class EnforcementCoordinator:
    """Lock-guarded mode state machine plus recent-history ring buffers."""

    def __init__(self, config: EnforcementConfig | None = None) -> None:
        config = config or EnforcementConfig()
        if config.recent_capacity < 1:
            raise ConfigError("recent_capacity must be at least 1")
        self._lock = threading.Lock()
        self._enabled = config.enabled
        self._mode = config.mode
        self._soft = config.soft_enforcement
        self._hard = config.hard_enforcement
        self._recent_violations: deque[Violation] = deque(
            maxlen=config.recent_capacity
        )
        self._recent_warnings: deque[PolicyWarning] = deque(
            maxlen=config.recent_capacity
        )
        self._cycles = 0
        self._total_violations = 0
        self._total_warnings = 0
        self._total_intents = 0
        self._by_severity: Counter[str] = Counter()
        self._last_check: datetime | None = None

    def process(
        self, evaluation: PolicyEvaluation, force_dry_run: bool = False
    ) -> CheckResult:
        """Decide intents for one cycle and record it.

        With ``force_dry_run`` the cycle is a preview: intents are simulated
        and the ring buffers and counters are left untouched.
        """
        with self._lock:
            mode = Mode.DRY_RUN if force_dry_run else self._mode
            soft, hard = self._soft, self._hard

        intents = _plan(evaluation.violations, mode, soft, hard)

        if not force_dry_run:
            with self._lock:
                self._recent_violations.extend(evaluation.violations)
                self._recent_warnings.extend(evaluation.warnings)
                self._cycles += 1
                self._total_violations += len(evaluation.violations)
                self._total_warnings += len(evaluation.warnings)
                self._total_intents += len(intents)
                self._by_severity.update(
                    v.severity.value for v in evaluation.violations
                )
                self._last_check = evaluation.timestamp

        for intent in intents:
            log = logger.info if intent.simulated else logger.warning
            log(
                "%s%s for %s (gpu %s, pid %s): %s",
                "[dry-run] " if intent.simulated else "",
                intent.action.value,
                intent.target.user,
                intent.target.gpu_id,
                intent.target.process_pid,
                intent.reason,
            )

        return CheckResult(
            timestamp=evaluation.timestamp,
            enabled=True,
            simulated=mode is Mode.DRY_RUN,
            violations=evaluation.violations,
            warnings=evaluation.warnings,
            intents=intents,
        )

    # --- Configuration ---

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._enabled = enabled
        logger.info("Guard %s", "enabled" if enabled else "disabled")

    def set_mode(self, mode: Mode) -> None:
        with self._lock:
            self._mode = mode
        logger.info("Enforcement mode set to %s", mode.value)

    def toggle_dry_run(self) -> Mode:
        with self._lock:
            self._mode = (
                Mode.ENFORCING if self._mode is Mode.DRY_RUN else Mode.DRY_RUN
            )
            mode = self._mode
        logger.info("Enforcement mode set to %s", mode.value)
        return mode

    def set_soft_enforcement(self, enabled: bool) -> None:
        with self._lock:
            self._soft = enabled

    def set_hard_enforcement(self, enabled: bool) -> None:
        with self._lock:
            self._hard = enabled

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def status(self) -> GuardStatus:
        """Consistent copy of the current state; later cycles never alter it."""
        with self._lock:
            return GuardStatus(
                enabled=self._enabled,
                mode=self._mode,
                soft_enforcement=self._soft,
                hard_enforcement=self._hard,
                cycles=self._cycles,
                total_violations=self._total_violations,
                total_warnings=self._total_warnings,
                total_intents=self._total_intents,
                last_check=self._last_check,
                recent_violations=tuple(self._recent_violations),
                recent_warnings=tuple(self._recent_warnings),
                violations_by_severity=dict(self._by_severity),
            )


def _plan(
    violations: tuple[Violation, ...], mode: Mode, soft: bool, hard: bool
) -> tuple[EnforcementIntent, ...]:
    intents: list[EnforcementIntent] = []
    for v in violations:
        action = action_for(v.severity)
        if mode is Mode.ENFORCING:
            allowed = soft if action in _SOFT else hard
            if not allowed:
                continue
        intents.append(
            EnforcementIntent(
                action=action,
                target=EnforcementTarget(
                    user=v.user, gpu_id=v.gpu_id, process_pid=v.process_pid
                ),
                violation_id=v.id,
                severity=v.severity,
                reason=v.message,
                simulated=mode is Mode.DRY_RUN,
            )
        )
    return tuple(intents)
