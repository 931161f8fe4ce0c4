from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from rich.console import Console

from .config_store import Configuration
from .errors import ConfigKeyError
from .lib.env import PATHS
from .lib.prompt import AutoPrompter, ConsolePrompter, Prompter
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .menu import config_table, interactive_menu, print_outcomes, status_table, tail_lines, validation_table
from .pipeline import Orchestrator, StepContext, StepStatus
from .reboot import RebootCoordinator
from .state_store import StateStore
from .steps import build_registry
from .validation import run_validation

logger = logging.getLogger(__name__)


def build_orchestrator(
    *,
    config_path: str = PATHS.config_default,
    state_path: str = PATHS.state_default,
    prompter: Prompter,
    dry_run: Optional[bool] = None,
) -> Orchestrator:
    """Wire config, state, gateway and steps together.

    ``dry_run`` (from ``--execute``/``--dry-run``) overrides and persists DRY_RUN.
    """

    config = Configuration.load(config_path)
    if dry_run is not None and dry_run != config.dry_run:
        config.set("DRY_RUN", dry_run)

    ctx = StepContext.create(config, prompter)
    registry = build_registry()
    coordinator = RebootCoordinator(
        config.reboot_step_ids, enabled=config.auto_reboot_enabled, executor=ctx.executor
    )
    unknown = [s for s in config.reboot_step_ids if registry.index_of(s) is None]
    if unknown:
        logger.warning("AUTO_REBOOT_AFTER_STEP_ID names unknown step(s): %s", " ".join(unknown))
    return Orchestrator(registry, StateStore(state_path), ctx, coordinator)


def _run(orchestrator: Orchestrator, console: Console) -> int:
    outcomes = orchestrator.run_remaining()
    print_outcomes(console, outcomes)
    return 1 if outcomes and outcomes[-1].status is StepStatus.FAILED else 0


def _step(orchestrator: Orchestrator, console: Console, step_id: str) -> int:
    outcome = orchestrator.run_step_by_id(step_id)
    print_outcomes(console, [outcome])
    if outcome.status is StepStatus.REBOOT_REQUESTED:
        orchestrator.coordinator.restart()
    return 1 if outcome.status is StepStatus.FAILED else 0


def _config(orchestrator: Orchestrator, console: Console, args: argparse.Namespace) -> int:
    config = orchestrator.ctx.config
    if args.config_cmd == "set":
        try:
            config.set(args.key, args.value)
        except (ConfigKeyError, ValueError) as e:
            console.print(f"[red]Cannot set {args.key}: {e}[/red]")
            return 2
    console.print(config_table(config))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="xdr-installer", description="Resumable XDR sensor host installer")
    p.add_argument("--config", default=PATHS.config_default, help="Path to configuration (conf|json|yaml)")
    p.add_argument("--state", default=PATHS.state_default, help="Path to installer state (state|json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--execute", dest="dry_run", action="store_false", default=None, help="Perform changes (DRY_RUN=0)")
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", help="Only simulate changes (DRY_RUN=1)")
    p.add_argument("--yes", action="store_true", help="Answer every confirmation with yes (non-interactive)")

    sub = p.add_subparsers(dest="command")
    sub.add_parser("run", help="Run remaining steps from the saved state")
    step = sub.add_parser("step", help="Run one step regardless of saved state")
    step.add_argument("step_id")

    cfg = sub.add_parser("config", help="Show or change configuration")
    cfg_sub = cfg.add_subparsers(dest="config_cmd")
    cfg_sub.add_parser("show")
    cfg_set = cfg_sub.add_parser("set")
    cfg_set.add_argument("key")
    cfg_set.add_argument("value")

    sub.add_parser("validate", help="Read-only validation of the host")
    log = sub.add_parser("log", help="Show the end of the installer log")
    log.add_argument("--lines", type=int, default=200)
    sub.add_parser("status", help="Show step progress")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()

    log_path = configure_logging(log_path=args.log, also_console=args.command is not None)
    prompter: Prompter = AutoPrompter(assume_yes=True) if args.yes else ConsolePrompter(console)

    orchestrator = build_orchestrator(
        config_path=args.config, state_path=args.state, prompter=prompter, dry_run=args.dry_run
    )
    logger.info("Mode: %s", "DRY-RUN" if orchestrator.ctx.dry_run else "EXECUTE")

    if args.command is None:
        return interactive_menu(orchestrator, log_path=log_path, console=console)
    if args.command == "run":
        return _run(orchestrator, console)
    if args.command == "step":
        return _step(orchestrator, console, args.step_id)
    if args.command == "config":
        return _config(orchestrator, console, args)
    if args.command == "validate":
        checks = run_validation(orchestrator.ctx)
        console.print(validation_table(checks))
        return 0 if all(c.ok for c in checks) else 1
    if args.command == "log":
        console.print("\n".join(tail_lines(log_path, args.lines)) or "(log is empty)")
        return 0
    console.print(status_table(orchestrator))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
