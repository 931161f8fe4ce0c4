from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

from .config_store import Configuration
from .errors import FatalMisconfiguration, InstallerError, StepNotApplicable, UserCancelled
from .lib.command import Executor, Runner, subprocess_runner
from .lib.hwdetect import HardwareProbe
from .lib.pkg import PackageManager
from .lib.prompt import Prompter
from .lib.virsh import Virsh
from .reboot import RebootCoordinator
from .state_store import InstallationState, StateStore

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """Everything a step handler may touch. Handlers get nothing else."""

    config: Configuration
    executor: Executor
    prompter: Prompter
    probe: HardwareProbe
    hypervisor: Virsh
    packages: PackageManager
    root: str = "/"
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        config: Configuration,
        prompter: Prompter,
        *,
        runner: Runner = subprocess_runner,
        root: str = "/",
    ) -> "StepContext":
        executor = Executor(simulate=config.dry_run, runner=runner)
        return cls(
            config=config,
            executor=executor,
            prompter=prompter,
            probe=HardwareProbe(
                executor,
                sysfs_root=os.path.join(root, "sys"),
                procfs_root=os.path.join(root, "proc"),
                etc_root=os.path.join(root, "etc"),
            ),
            hypervisor=Virsh(executor),
            packages=PackageManager(executor),
            root=root,
        )

    @property
    def dry_run(self) -> bool:
        return self.executor.simulate

    def host_path(self, path: str) -> str:
        """``/etc/fstab`` under the configured root."""
        return os.path.join(self.root, path.lstrip("/"))


class StepHandler(Protocol):
    step_id: str
    display_name: str

    def run(self, ctx: StepContext) -> None:
        ...


@dataclass(frozen=True)
class StepDefinition:
    id: str
    display_name: str
    handler: Optional[StepHandler]


class StepRegistry:
    """Ordered, immutable step table."""

    def __init__(self, definitions: Sequence[StepDefinition]) -> None:
        seen = set()
        for d in definitions:
            if d.id in seen:
                raise ValueError(f"Duplicate step id: {d.id}")
            seen.add(d.id)
        self._defs: Tuple[StepDefinition, ...] = tuple(definitions)

    @classmethod
    def from_handlers(cls, handlers: Sequence[StepHandler]) -> "StepRegistry":
        return cls([StepDefinition(h.step_id, h.display_name, h) for h in handlers])

    def __len__(self) -> int:
        return len(self._defs)

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self._defs)

    def __getitem__(self, index: int) -> StepDefinition:
        return self._defs[index]

    @property
    def ids(self) -> List[str]:
        return [d.id for d in self._defs]

    def index_of(self, step_id: Optional[str]) -> Optional[int]:
        for i, d in enumerate(self._defs):
            if d.id == step_id:
                return i
        return None

    def get(self, step_id: str) -> StepDefinition:
        i = self.index_of(step_id)
        if i is None:
            raise FatalMisconfiguration(f"No handler registered for step id {step_id!r}")
        return self._defs[i]


class StepStatus(enum.Enum):
    COMPLETED = "completed"
    REBOOT_REQUESTED = "reboot_requested"
    DECLINED = "declined"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"

    @property
    def advances(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.REBOOT_REQUESTED)


@dataclass(frozen=True)
class StepOutcome:
    step_id: str
    status: StepStatus
    message: str = ""
    state_saved: bool = False


class Phase(enum.Enum):
    NOT_STARTED = "NotStarted"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


def resume_index(registry: StepRegistry, state: InstallationState) -> int:
    """Position after the last completed step; 0 when unset or unknown."""

    if not state.last_completed_step_id:
        return 0
    idx = registry.index_of(state.last_completed_step_id)
    if idx is None:
        logger.warning(
            "Persisted step id %r is not in the registry; starting from the first step",
            state.last_completed_step_id,
        )
        return 0
    return idx + 1


class Orchestrator:
    """Runs registered steps with confirm gate, durable progress and reboot handoff.

    ``run_step`` never raises for a step's own failure; every outcome is a
    ``StepOutcome``. State is written only after a handler returns normally
    (or a not-applicable step asks for it), and always before a reboot
    outcome is returned.
    """

    def __init__(
        self,
        registry: StepRegistry,
        state_store: StateStore,
        ctx: StepContext,
        coordinator: RebootCoordinator,
    ) -> None:
        self.registry = registry
        self.state_store = state_store
        self.ctx = ctx
        self.coordinator = coordinator
        self.phase: Phase = Phase.NOT_STARTED
        self.current_step: Optional[str] = None

    def resume_index(self) -> int:
        return resume_index(self.registry, self.state_store.load())

    def all_complete(self) -> bool:
        return self.resume_index() >= len(self.registry)

    def _finish(self, step_id: str, status: StepStatus, message: str = "", *, saved: bool = False) -> StepOutcome:
        self.phase = Phase.FAILED if status is StepStatus.FAILED else Phase.COMPLETED
        return StepOutcome(step_id=step_id, status=status, message=message, state_saved=saved)

    def run_step(self, index: int) -> StepOutcome:
        if not 0 <= index < len(self.registry):
            return self._finish(f"#{index}", StepStatus.FAILED, f"Step index {index} out of range")
        definition = self.registry[index]
        return self._run(definition)

    def run_step_by_id(self, step_id: str) -> StepOutcome:
        try:
            definition = self.registry.get(step_id)
        except FatalMisconfiguration as e:
            logger.error("STEP FAILED %s: %s", step_id, e)
            return self._finish(step_id, StepStatus.FAILED, str(e))
        return self._run(definition)

    def _run(self, definition: StepDefinition) -> StepOutcome:
        step_id = definition.id
        self.current_step = step_id
        self.phase = Phase.RUNNING

        try:
            if definition.handler is None:
                raise FatalMisconfiguration(f"No handler registered for step id {step_id!r}")

            mode = "DRY-RUN" if self.ctx.dry_run else "EXECUTE"
            if not self.ctx.prompter.confirm(
                f"STEP {step_id}", f"{definition.display_name}\n\nMode: {mode}\n\nRun this step now?"
            ):
                raise UserCancelled("Operator declined the step confirmation")

            logger.info("STEP START %s - %s (%s)", step_id, definition.display_name, mode)
            definition.handler.run(self.ctx)

        except UserCancelled as e:
            logger.info("STEP DECLINED %s: %s (state not changed)", step_id, e)
            return self._finish(step_id, StepStatus.DECLINED, str(e))

        except StepNotApplicable as e:
            saved = False
            if e.advance_state:
                try:
                    self.state_store.save(step_id)
                except OSError as write_error:
                    logger.error("STEP FAILED %s: could not persist state: %s", step_id, write_error)
                    return self._finish(step_id, StepStatus.FAILED, f"State write failed: {write_error}")
                saved = True
            logger.info(
                "STEP NOT APPLICABLE %s: %s (state %s)", step_id, e.reason, "advanced" if saved else "not changed"
            )
            return self._finish(step_id, StepStatus.NOT_APPLICABLE, e.reason, saved=saved)

        except InstallerError as e:
            logger.error("STEP FAILED %s: %s: %s", step_id, type(e).__name__, e)
            return self._finish(step_id, StepStatus.FAILED, f"{type(e).__name__}: {e}")

        except Exception as e:
            logger.exception("STEP FAILED %s: unexpected error", step_id)
            return self._finish(step_id, StepStatus.FAILED, f"{type(e).__name__}: {e}")

        try:
            self.state_store.save(step_id)
        except OSError as e:
            logger.error("STEP FAILED %s: could not persist state: %s", step_id, e)
            return self._finish(step_id, StepStatus.FAILED, f"State write failed: {e}")

        logger.info("STEP DONE %s", step_id)
        if self.coordinator.should_restart(step_id):
            return self._finish(step_id, StepStatus.REBOOT_REQUESTED, "Host reboot required", saved=True)
        return self._finish(step_id, StepStatus.COMPLETED, saved=True)

    def run_remaining(self, *, restart: bool = True) -> List[StepOutcome]:
        """Run from the resume point until the end, a failure, a decline or a reboot.

        On a reboot outcome the coordinator's ``restart()`` is issued (state
        is already saved by then) unless ``restart`` is False.
        """

        outcomes: List[StepOutcome] = []
        start = self.resume_index()
        if start >= len(self.registry):
            logger.info("All steps are already complete")
            return outcomes

        for index in range(start, len(self.registry)):
            outcome = self.run_step(index)
            outcomes.append(outcome)

            if outcome.status is StepStatus.REBOOT_REQUESTED:
                if restart:
                    self.coordinator.restart()
                break
            if outcome.status in (StepStatus.FAILED, StepStatus.DECLINED):
                logger.info("Automatic execution stopped at %s (%s)", outcome.step_id, outcome.status.value)
                break
            if outcome.status is StepStatus.NOT_APPLICABLE and not outcome.state_saved:
                logger.info("Automatic execution stopped at %s (not applicable, not advanced)", outcome.step_id)
                break

        return outcomes

    def status_rows(self) -> List[Tuple[str, str, str]]:
        done_upto = self.resume_index()
        return [
            (d.id, d.display_name, "Completed" if i < done_upto else "Pending")
            for i, d in enumerate(self.registry)
        ]
