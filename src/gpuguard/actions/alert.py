"""Alert action — logs intents and calls an optional callback."""

from __future__ import annotations

import logging
from collections.abc import Callable

from gpuguard.enforcement.models import EnforcementAction, EnforcementIntent

logger = logging.getLogger(__name__)


class AlertAction:
    """Handles WARN and SOFT_NOTIFY by logging, plus an optional notifier."""

    def __init__(
        self,
        callback: Callable[[EnforcementIntent], None] | None = None,
    ) -> None:
        self._callback = callback

    def execute(self, intent: EnforcementIntent) -> bool:
        level = (
            logging.WARNING
            if intent.action is EnforcementAction.SOFT_NOTIFY
            else logging.INFO
        )
        logger.log(
            level,
            "POLICY %s [%s]: user %s on GPU %s: %s",
            intent.action.value.upper(),
            intent.severity.value,
            intent.target.user,
            intent.target.gpu_id,
            intent.reason,
        )
        if self._callback:
            self._callback(intent)
        return True
