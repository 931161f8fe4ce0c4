"""Error taxonomy.

Step handlers raise these; the orchestrator is the only place they are
caught and turned into a step outcome. None of them terminates the process.
"""

from __future__ import annotations

from typing import Any, List, Optional


class InstallerError(RuntimeError):
    """Base class for all installer step errors."""


class UserCancelled(InstallerError):
    """The operator declined a confirmation. No mutation happened."""


class StepNotApplicable(InstallerError):
    """The step has nothing to do in the current context.

    ``advance_state`` is decided by the raising step: some "nothing to do"
    cases mean the work is already done (advance), others mean the step
    should be offered again later (do not advance).
    """

    def __init__(self, reason: str, *, advance_state: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.advance_state = advance_state


class ValidationError(InstallerError):
    """A prerequisite (earlier step output, config value, operator input) is missing or invalid."""


class ExternalCommandFailure(InstallerError):
    """Package manager, hypervisor or probe returned an error."""

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(message)
        self.result = result


class PartialFailure(InstallerError):
    """Some items of a batch failed; the rest were still processed."""

    def __init__(self, message: str, failed_items: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.failed_items = list(failed_items or [])


class FatalMisconfiguration(InstallerError):
    """A step id is known (persisted or requested) but has no registered handler."""


class PCIAddressError(ValueError):
    """A PCI bus address string could not be parsed."""


class ConfigKeyError(KeyError):
    """A configuration key that is not declared."""
