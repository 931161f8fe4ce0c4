from __future__ import annotations

import logging
from typing import Iterable

from .lib.command import Executor

logger = logging.getLogger(__name__)


class RebootCoordinator:
    """Decides whether a completed step needs a host restart.

    Only the top-level driver calls ``restart()``, and only after the step
    has been persisted as completed; the restart ends this process and the
    next run resumes from the persisted state.
    """

    def __init__(self, step_ids: Iterable[str], *, enabled: bool, executor: Executor) -> None:
        self.step_ids = frozenset(step_ids)
        self.enabled = enabled
        self.executor = executor

    def requires_reboot(self, step_id: str) -> bool:
        return self.enabled and step_id in self.step_ids

    def should_restart(self, step_id: str) -> bool:
        if not self.requires_reboot(step_id):
            return False
        if self.executor.simulate:
            logger.info("[DRY-RUN] STEP %s requires a host reboot; auto-reboot will not be performed", step_id)
            return False
        logger.info("STEP %s is in AUTO_REBOOT_AFTER_STEP_ID; host reboot requested", step_id)
        return True

    def restart(self) -> None:
        logger.info("System reboot execution...")
        self.executor.run(["sync"], check=False)
        self.executor.run(["systemctl", "reboot"])
