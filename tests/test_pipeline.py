from __future__ import annotations

from typing import List

import pytest

from xdr_installer.errors import ExternalCommandFailure, StepNotApplicable, UserCancelled, ValidationError
from xdr_installer.pipeline import (
    Orchestrator,
    Phase,
    StepDefinition,
    StepRegistry,
    StepStatus,
    resume_index,
)
from xdr_installer.reboot import RebootCoordinator
from xdr_installer.state_store import InstallationState, StateStore

from .conftest import RecordingRunner


class FakeStep:
    def __init__(self, step_id: str, error: Exception = None):
        self.step_id = step_id
        self.display_name = f"step {step_id}"
        self.error = error
        self.calls = 0

    def run(self, ctx) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


IDS = ["01", "02", "03", "04", "05"]


def make_orchestrator(make_ctx, tmp_path, steps: List[FakeStep], *, reboot=("03", "05"), dry_run=True, runner=None, **kw):
    ctx = make_ctx(runner, dry_run=dry_run, **kw)
    registry = StepRegistry.from_handlers(steps)
    coordinator = RebootCoordinator(reboot, enabled=True, executor=ctx.executor)
    store = StateStore(str(tmp_path / "xdr_install.state"))
    return Orchestrator(registry, store, ctx, coordinator), store


def test_registry_rejects_duplicate_ids():
    with pytest.raises(ValueError):
        StepRegistry.from_handlers([FakeStep("01"), FakeStep("01")])


@pytest.mark.parametrize("completed", range(len(IDS) + 1))
def test_resume_index_equals_completed_prefix_length(completed):
    registry = StepRegistry.from_handlers([FakeStep(i) for i in IDS])
    last = IDS[completed - 1] if completed else None
    assert resume_index(registry, InstallationState(last_completed_step_id=last)) == completed


def test_resume_index_resets_for_unknown_step_id():
    registry = StepRegistry.from_handlers([FakeStep(i) for i in IDS])
    assert resume_index(registry, InstallationState(last_completed_step_id="99_removed")) == 0


def test_run_remaining_runs_all_steps_in_dry_run(make_ctx, tmp_path):
    steps = [FakeStep(i) for i in IDS]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps)

    outcomes = orch.run_remaining()

    assert [o.status for o in outcomes] == [StepStatus.COMPLETED] * len(IDS)
    assert all(s.calls == 1 for s in steps)
    assert store.load().last_completed_step_id == "05"
    assert orch.all_complete()
    assert orch.run_remaining() == []


def test_each_successful_step_advances_state_by_one(make_ctx, tmp_path):
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep(i) for i in IDS])
    for n in range(len(IDS)):
        assert orch.resume_index() == n
        orch.run_step(orch.resume_index())
    assert orch.resume_index() == len(IDS)


def test_declined_gate_leaves_state_unchanged(make_ctx, tmp_path):
    steps = [FakeStep(i) for i in IDS]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps, answers={"STEP 01": False})

    outcomes = orch.run_remaining()

    assert [o.status for o in outcomes] == [StepStatus.DECLINED]
    assert steps[0].calls == 0
    assert store.load().last_completed_step_id is None
    assert orch.resume_index() == 0


def test_user_cancel_inside_step_is_declined_not_failed(make_ctx, tmp_path):
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep("01", UserCancelled("no"))])
    outcome = orch.run_step(0)
    assert outcome.status is StepStatus.DECLINED
    assert store.load().last_completed_step_id is None


def test_not_applicable_advances_only_when_step_asks(make_ctx, tmp_path):
    steps = [
        FakeStep("01", StepNotApplicable("already done", advance_state=True)),
        FakeStep("02", StepNotApplicable("nothing to do yet")),
        FakeStep("03"),
    ]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps, reboot=())

    outcomes = orch.run_remaining()

    assert [o.status for o in outcomes] == [StepStatus.NOT_APPLICABLE, StepStatus.NOT_APPLICABLE]
    assert [o.state_saved for o in outcomes] == [True, False]
    assert store.load().last_completed_step_id == "01"
    assert steps[2].calls == 0


def test_state_write_error_on_skip_is_a_failed_outcome(make_ctx, tmp_path, monkeypatch):
    steps = [FakeStep("01", StepNotApplicable("already done", advance_state=True))]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps, reboot=())

    def broken_save(step_id):
        raise PermissionError("read-only state dir")

    monkeypatch.setattr(store, "save", broken_save)
    outcome = orch.run_step(0)

    assert outcome.status is StepStatus.FAILED
    assert not outcome.state_saved
    assert "State write failed" in outcome.message


@pytest.mark.parametrize(
    "error",
    [ValidationError("HOST_NIC missing"), ExternalCommandFailure("apt failed"), RuntimeError("boom")],
)
def test_failure_does_not_advance_and_does_not_raise(make_ctx, tmp_path, error):
    steps = [FakeStep("01"), FakeStep("02", error), FakeStep("03")]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps)

    outcomes = orch.run_remaining()

    assert [o.status for o in outcomes] == [StepStatus.COMPLETED, StepStatus.FAILED]
    assert orch.phase is Phase.FAILED
    assert store.load().last_completed_step_id == "01"
    assert steps[2].calls == 0

    # retry after the cause is fixed
    steps[1].error = None
    assert orch.run_step(orch.resume_index()).status is StepStatus.COMPLETED
    assert store.load().last_completed_step_id == "02"


def test_unknown_step_id_is_fatal_misconfiguration_for_that_step_only(make_ctx, tmp_path):
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep(i) for i in IDS])

    outcome = orch.run_step_by_id("42_missing")
    assert outcome.status is StepStatus.FAILED
    assert "FatalMisconfiguration" in outcome.message or "No handler" in outcome.message

    assert orch.run_step_by_id("02").status is StepStatus.COMPLETED


def test_definition_without_handler_fails(make_ctx, tmp_path):
    ctx = make_ctx()
    registry = StepRegistry([StepDefinition("01", "orphan", None)])
    orch = Orchestrator(
        registry,
        StateStore(str(tmp_path / "s.state")),
        ctx,
        RebootCoordinator((), enabled=False, executor=ctx.executor),
    )
    outcome = orch.run_step(0)
    assert outcome.status is StepStatus.FAILED
    assert "FatalMisconfiguration" in outcome.message


def test_reboot_requested_after_state_persisted(make_ctx, tmp_path):
    state_path = tmp_path / "xdr_install.state"
    seen_at_reboot = []

    class RebootSpy(RecordingRunner):
        def __call__(self, argv, input_text=None):
            if argv[:2] == ["systemctl", "reboot"]:
                seen_at_reboot.append(StateStore(str(state_path)).load().last_completed_step_id)
            return super().__call__(argv, input_text)

    runner = RebootSpy(default_rc=0)
    steps = [FakeStep(i) for i in IDS]
    orch, store = make_orchestrator(make_ctx, tmp_path, steps, dry_run=False, runner=runner)

    outcomes = orch.run_remaining()

    assert [o.status for o in outcomes] == [StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.REBOOT_REQUESTED]
    assert outcomes[-1].state_saved
    assert seen_at_reboot == ["03"]
    assert steps[3].calls == 0


def test_step_outside_reboot_set_triggers_no_restart(make_ctx, tmp_path):
    runner = RecordingRunner(default_rc=0)
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep(i) for i in IDS], dry_run=False, runner=runner)
    store.save("03")

    outcome = orch.run_step(3)

    assert outcome.status is StepStatus.COMPLETED
    assert not any(c[:2] == ["systemctl", "reboot"] for c in runner.calls)


def test_reboot_step_in_dry_run_only_logs(make_ctx, tmp_path):
    runner = RecordingRunner(default_rc=0)
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep(i) for i in IDS], runner=runner)

    outcomes = orch.run_remaining()

    assert StepStatus.REBOOT_REQUESTED not in [o.status for o in outcomes]
    assert runner.calls == []
    assert "sync" not in orch.ctx.executor.actions


def test_status_rows(make_ctx, tmp_path):
    orch, store = make_orchestrator(make_ctx, tmp_path, [FakeStep(i) for i in IDS])
    store.save("02")
    assert [r[2] for r in orch.status_rows()] == ["Completed", "Completed", "Pending", "Pending", "Pending"]
