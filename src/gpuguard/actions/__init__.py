"""Executors for enforcement intents."""

from __future__ import annotations

from gpuguard.actions.alert import AlertAction
from gpuguard.actions.base import ActionHandler, dispatch_intents
from gpuguard.actions.kill import KillAction
from gpuguard.enforcement.models import EnforcementAction


def default_handlers() -> dict[EnforcementAction, ActionHandler]:
    alert = AlertAction()
    return {
        EnforcementAction.WARN: alert,
        EnforcementAction.SOFT_NOTIFY: alert,
        EnforcementAction.TERMINATE: KillAction(),
    }


__all__ = [
    "ActionHandler",
    "AlertAction",
    "KillAction",
    "default_handlers",
    "dispatch_intents",
]
