"""Kill action — terminate the offending GPU process."""

from __future__ import annotations

import logging
import os
import signal

from gpuguard.enforcement.models import EnforcementIntent

logger = logging.getLogger(__name__)


class KillAction:
    """Sends SIGTERM to the process named by a TERMINATE intent."""

    def __init__(self, sig: int = signal.SIGTERM) -> None:
        self._signal = sig

    def execute(self, intent: EnforcementIntent) -> bool:
        pid = intent.target.process_pid
        if pid is None:
            logger.error(
                "Cannot terminate for %s on GPU %s: no process id",
                intent.target.user,
                intent.target.gpu_id,
            )
            return False
        # 0 signals our own process group, 1 is init
        if pid <= 1:
            logger.error("Refusing to signal pid %d", pid)
            return False

        logger.critical(
            "TERMINATING process %d (user %s, GPU %s): %s",
            pid,
            intent.target.user,
            intent.target.gpu_id,
            intent.reason,
        )
        try:
            os.kill(pid, self._signal)
            logger.info("Signal sent to process %d", pid)
            return True
        except ProcessLookupError:
            logger.warning("Process %d already exited", pid)
            return True
        except PermissionError:
            logger.error("Permission denied terminating process %d", pid)
            return False
