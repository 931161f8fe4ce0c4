from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .config_store import CONFIG_KEYS, Configuration
from .errors import ConfigKeyError, InstallerError, UserCancelled
from .pipeline import Orchestrator, StepOutcome, StepStatus
from .validation import ValidationCheck, run_validation

logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    StepStatus.COMPLETED: "green",
    StepStatus.REBOOT_REQUESTED: "yellow",
    StepStatus.DECLINED: "cyan",
    StepStatus.NOT_APPLICABLE: "cyan",
    StepStatus.FAILED: "red",
}


def status_table(orchestrator: Orchestrator) -> Table:
    table = Table(title="Installation steps")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Name")
    table.add_column("Status")
    for i, (step_id, name, status) in enumerate(orchestrator.status_rows(), start=1):
        style = "green" if status == "Completed" else "white"
        table.add_row(str(i), step_id, name, f"[{style}]{status}[/{style}]")
    return table


def print_outcomes(console: Console, outcomes: List[StepOutcome]) -> None:
    if not outcomes:
        console.print("[green]All steps are already complete.[/green]")
    for o in outcomes:
        style = _STATUS_STYLE[o.status]
        console.print(f"[{style}]{o.step_id}: {o.status.value}[/{style}] {o.message}")


def config_table(config: Configuration) -> Table:
    table = Table(title=f"Configuration ({config.path})")
    table.add_column("Key")
    table.add_column("Value")
    table.add_column("Help", style="dim")
    for key in CONFIG_KEYS:
        value = config[key.name]
        shown = "(configured)" if key.name == "ACPS_PASSWORD" and value else str(value)
        table.add_row(key.name, shown, key.help)
    return table


def validation_table(checks: List[ValidationCheck]) -> Table:
    table = Table(title="Full validation")
    table.add_column("Check")
    table.add_column("Result")
    table.add_column("Detail", style="dim")
    for c in checks:
        table.add_row(c.name, "[green]OK[/green]" if c.ok else "[red]FAIL[/red]", c.detail)
    return table


def tail_lines(path: str, lines: int = 200) -> List[str]:
    p = Path(path)
    if not p.exists():
        return []
    with p.open(encoding="utf-8", errors="replace") as f:
        return [ln.rstrip("\n") for ln in deque(f, maxlen=lines)]


def edit_config(console: Console, orchestrator: Orchestrator) -> None:
    config = orchestrator.ctx.config
    while True:
        console.print(config_table(config))
        name = Prompt.ask("Key to change (empty to go back)", default="", console=console).strip()
        if not name:
            return
        password = name == "ACPS_PASSWORD"
        try:
            current = "" if password else str(config[name])
        except ConfigKeyError:
            console.print(f"[red]Unknown key: {name}[/red]")
            continue
        value = Prompt.ask(f"{name}", default=current, password=password, console=console)
        try:
            config.set(name, value)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            continue
        # DRY_RUN switches the gateway mode for the rest of this session
        orchestrator.ctx.executor.simulate = config.dry_run


def choose_step(console: Console, orchestrator: Orchestrator) -> Optional[int]:
    console.print(status_table(orchestrator))
    raw = Prompt.ask("Step number or id (empty to go back)", default="", console=console).strip()
    if not raw:
        return None
    if raw.isdigit() and 1 <= int(raw) <= len(orchestrator.registry):
        return int(raw) - 1
    idx = orchestrator.registry.index_of(raw)
    if idx is None:
        console.print(f"[red]Unknown step: {raw}[/red]")
    return idx


def interactive_menu(orchestrator: Orchestrator, *, log_path: str, console: Optional[Console] = None) -> int:
    console = console or Console()
    items = [
        ("1", "Run remaining steps (auto-continue from saved state)"),
        ("2", "Run a single step"),
        ("3", "Configuration"),
        ("4", "Full validation"),
        ("5", "View log"),
        ("6", "Exit"),
    ]

    while True:
        mode = "[yellow]DRY-RUN[/yellow]" if orchestrator.ctx.dry_run else "[red]EXECUTE[/red]"
        body = "\n".join(f"{k}) {label}" for k, label in items)
        console.print(Panel(body, title=f"XDR Sensor Installer ({mode})", expand=False))
        try:
            choice = Prompt.ask("Select", choices=[k for k, _ in items], default="1", console=console)

            if choice == "1":
                outcomes = orchestrator.run_remaining()
                print_outcomes(console, outcomes)
                if outcomes and outcomes[-1].status is StepStatus.REBOOT_REQUESTED:
                    return 0
            elif choice == "2":
                idx = choose_step(console, orchestrator)
                if idx is not None:
                    outcome = orchestrator.run_step(idx)
                    print_outcomes(console, [outcome])
                    if outcome.status is StepStatus.REBOOT_REQUESTED:
                        orchestrator.coordinator.restart()
                        return 0
            elif choice == "3":
                edit_config(console, orchestrator)
            elif choice == "4":
                console.print(validation_table(run_validation(orchestrator.ctx)))
            elif choice == "5":
                lines = tail_lines(log_path)
                console.print(Panel("\n".join(lines) or "(log is empty)", title=log_path))
            else:
                return 0
        except (KeyboardInterrupt, UserCancelled):
            console.print("\n[dim]Cancelled[/dim]")
        except InstallerError as e:
            console.print(f"[red]{type(e).__name__}: {e}[/red]")
