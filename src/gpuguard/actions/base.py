"""Action handler protocol — executors for enforcement intents."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol

from gpuguard.enforcement.models import EnforcementAction, EnforcementIntent

logger = logging.getLogger(__name__)


class ActionHandler(Protocol):
    """Protocol for enforcement actions."""

    def execute(self, intent: EnforcementIntent) -> bool:
        """Carry out the intent. Returns True if the action succeeded."""
        ...


def dispatch_intents(
    intents: Iterable[EnforcementIntent],
    handlers: Mapping[EnforcementAction, ActionHandler],
) -> int:
    """Hand each real intent to the handler for its action.

    Simulated intents are never executed. Returns the number of intents
    whose handler reported success.
    """
    succeeded = 0
    for intent in intents:
        if intent.simulated:
            continue
        handler = handlers.get(intent.action)
        if handler is None:
            logger.error("No handler registered for %s", intent.action.value)
            continue
        if handler.execute(intent):
            succeeded += 1
    return succeeded
