"""Guard manager tying history and detection to policy enforcement."""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Mapping
from datetime import datetime

from gpuguard.actions import ActionHandler, default_handlers, dispatch_intents
from gpuguard.config import GpuGuardConfig
from gpuguard.detection.config import RogueConfig, load_rogue_config
from gpuguard.detection.detector import scan, should_alert
from gpuguard.detection.models import RogueScanResult
from gpuguard.enforcement.coordinator import EnforcementCoordinator
from gpuguard.enforcement.models import (
    CheckResult,
    EnforcementAction,
    GuardStatus,
    Mode,
)
from gpuguard.policy.evaluator import evaluate
from gpuguard.policy.loader import GuardConfig, load_guard_config
from gpuguard.policy.models import (
    EffectiveLimits,
    GlobalSettings,
    GpuPolicy,
    GroupPolicy,
    TimePolicy,
    UserPolicy,
)
from gpuguard.policy.store import PolicySet, PolicyStore
from gpuguard.snapshot.models import HistoryWindow, Snapshot

logger = logging.getLogger(__name__)


class GuardManager:
    """Owns every piece of mutable guard state.

    One instance backs the CLI or the web app. Detection and evaluation read
    immutable views, so a policy or config change made from another thread
    applies from the next call on.
    """

    def __init__(
        self,
        guard_config: GuardConfig | None = None,
        rogue_config: RogueConfig | None = None,
        history_hours: float = 24.0,
        handlers: Mapping[EnforcementAction, ActionHandler] | None = None,
    ) -> None:
        guard_config = guard_config or GuardConfig()
        self._store = PolicyStore(guard_config.policies)
        self._coordinator = EnforcementCoordinator(guard_config.enforcement)
        self._rogue_config = (rogue_config or RogueConfig()).validate()
        self._history = HistoryWindow(lookback_hours=history_hours)
        self._handlers = (
            dict(handlers) if handlers is not None else default_handlers()
        )
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: GpuGuardConfig) -> GuardManager:
        """Build a manager from the files and settings named in ``config``."""
        guard = (
            load_guard_config(config.guard_config_path)
            if config.guard_config_path
            else GuardConfig()
        )
        if guard.enforcement.recent_capacity != config.recent_capacity:
            guard = dataclasses.replace(
                guard,
                enforcement=dataclasses.replace(
                    guard.enforcement, recent_capacity=config.recent_capacity
                ),
            )
        rogue = (
            load_rogue_config(config.rogue_config_path)
            if config.rogue_config_path
            else RogueConfig()
        )
        return cls(guard, rogue, history_hours=config.history_hours)

    # --- History ---

    def observe(self, snapshot: Snapshot) -> None:
        """Append a snapshot to the history window."""
        with self._lock:
            self._history.append(snapshot)

    def history(self, before: datetime | None = None) -> HistoryWindow:
        """Copy of the history window, optionally limited to before ``before``."""
        with self._lock:
            if before is None:
                return HistoryWindow.of(
                    list(self._history),
                    lookback_hours=self._history.lookback_hours,
                )
            return self._history.before(before)

    # --- Threat detection ---

    @property
    def rogue_config(self) -> RogueConfig:
        with self._lock:
            return self._rogue_config

    def set_rogue_config(self, config: RogueConfig) -> None:
        config.validate()
        with self._lock:
            self._rogue_config = config
        logger.info("Rogue detection config replaced")

    def whitelist_user(self, user: str) -> None:
        self.set_rogue_config(self.rogue_config.with_user_whitelisted(user))

    def unwhitelist_user(self, user: str) -> None:
        self.set_rogue_config(self.rogue_config.without_user_whitelisted(user))

    def whitelist_process(self, process: str) -> None:
        self.set_rogue_config(self.rogue_config.with_process_whitelisted(process))

    def unwhitelist_process(self, process: str) -> None:
        self.set_rogue_config(self.rogue_config.without_process_whitelisted(process))

    def scan(self, snapshot: Snapshot, observe: bool = False) -> RogueScanResult:
        """Scan ``snapshot`` against the owned history.

        With ``observe`` the snapshot is appended to history first; it is
        still never counted as its own past.
        """
        if observe:
            self.observe(snapshot)
        past = self.history(before=snapshot.timestamp)
        return scan(snapshot, past, self.rogue_config)

    def should_alert(self, result: RogueScanResult) -> bool:
        return should_alert(result, self.rogue_config)

    # --- Policy enforcement ---

    def check(
        self, snapshot: Snapshot, execute: bool = True, observe: bool = False
    ) -> CheckResult:
        """Run one evaluation cycle and dispatch real intents.

        When the guard is disabled nothing is evaluated and the result says
        so. With ``execute`` False intents are decided but not dispatched.
        ``observe`` appends the snapshot to history before evaluating.
        """
        if observe:
            self.observe(snapshot)
        if not self._coordinator.enabled:
            logger.info("Guard disabled, skipping policy check of %s", snapshot.host)
            return CheckResult(
                timestamp=snapshot.timestamp,
                enabled=False,
                simulated=self._coordinator.status().dry_run,
            )
        evaluation = evaluate(
            snapshot, self.history(before=snapshot.timestamp), self._store.view()
        )
        result = self._coordinator.process(evaluation)
        if not execute:
            return result
        dispatched = dispatch_intents(result.intents, self._handlers)
        return dataclasses.replace(result, dispatched=dispatched)

    def simulate(self, snapshot: Snapshot) -> CheckResult:
        """Preview what enforcement would do, without recording or acting."""
        evaluation = evaluate(
            snapshot, self.history(before=snapshot.timestamp), self._store.view()
        )
        return self._coordinator.process(evaluation, force_dry_run=True)

    def status(self) -> GuardStatus:
        return dataclasses.replace(
            self._coordinator.status(), policy_counts=self._store.view().counts
        )

    def set_enabled(self, enabled: bool) -> None:
        self._coordinator.set_enabled(enabled)

    def set_mode(self, mode: Mode) -> None:
        self._coordinator.set_mode(mode)

    def toggle_dry_run(self) -> Mode:
        return self._coordinator.toggle_dry_run()

    def set_soft_enforcement(self, enabled: bool) -> None:
        self._coordinator.set_soft_enforcement(enabled)

    def set_hard_enforcement(self, enabled: bool) -> None:
        self._coordinator.set_hard_enforcement(enabled)

    # --- Policies ---

    def policies(self) -> PolicySet:
        return self._store.view()

    def resolve(
        self, user: str, gpu_index: int, timestamp: datetime
    ) -> EffectiveLimits:
        return self._store.resolve(user, gpu_index, timestamp)

    def replace_policies(self, policies: PolicySet) -> None:
        self._store.replace(policies)

    def update_settings(self, settings: GlobalSettings) -> None:
        self._store.update_settings(settings)

    def add_user_policy(self, policy: UserPolicy) -> None:
        self._store.add_user_policy(policy)

    def remove_user_policy(self, username: str) -> None:
        self._store.remove_user_policy(username)

    def add_group_policy(self, policy: GroupPolicy) -> None:
        self._store.add_group_policy(policy)

    def remove_group_policy(self, group_name: str) -> None:
        self._store.remove_group_policy(group_name)

    def add_gpu_policy(self, policy: GpuPolicy) -> None:
        self._store.add_gpu_policy(policy)

    def remove_gpu_policy(self, gpu_index: int) -> None:
        self._store.remove_gpu_policy(gpu_index)

    def add_time_policy(self, policy: TimePolicy) -> None:
        self._store.add_time_policy(policy)

    def remove_time_policy(self, name: str) -> None:
        self._store.remove_time_policy(name)
