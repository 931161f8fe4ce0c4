from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, IntPrompt, Prompt
from rich.table import Table

from ..errors import UserCancelled, ValidationError

logger = logging.getLogger(__name__)

Option = Tuple[str, str]


class Prompter(Protocol):
    def confirm(self, title: str, message: str, *, default: bool = True) -> bool:
        ...

    def ask(self, title: str, message: str, *, default: str = "", secret: bool = False) -> str:
        ...

    def ask_int(self, title: str, message: str, *, default: int, minimum: int = 0) -> int:
        ...

    def choose_one(self, title: str, message: str, options: Sequence[Option], *, default: Optional[str] = None) -> str:
        ...

    def choose_many(
        self, title: str, message: str, options: Sequence[Option], *, defaults: Sequence[str] = ()
    ) -> List[str]:
        ...

    def show(self, title: str, text: str) -> None:
        ...


class ConsolePrompter:
    """Interactive prompts on the operator's terminal. Ctrl-C means "cancel"."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def _guard(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (KeyboardInterrupt, EOFError) as e:
            self.console.print()
            raise UserCancelled("Operator cancelled input") from e

    def confirm(self, title: str, message: str, *, default: bool = True) -> bool:
        self.console.print(Panel(message, title=title, expand=False))
        return bool(self._guard(Confirm.ask, "Proceed?", default=default, console=self.console))

    def ask(self, title: str, message: str, *, default: str = "", secret: bool = False) -> str:
        self.console.print(Panel(message, title=title, expand=False))
        answer = self._guard(
            Prompt.ask, "Value", default=default, password=secret, console=self.console, show_default=not secret
        )
        return str(answer or "").strip()

    def ask_int(self, title: str, message: str, *, default: int, minimum: int = 0) -> int:
        self.console.print(Panel(message, title=title, expand=False))
        while True:
            value = self._guard(IntPrompt.ask, "Value", default=default, console=self.console)
            if value >= minimum:
                return int(value)
            self.console.print(f"[red]Value must be >= {minimum}[/red]")

    def _options_table(self, options: Sequence[Option], marked: Sequence[str] = ()) -> Table:
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Name")
        table.add_column("Details")
        for i, (name, detail) in enumerate(options, start=1):
            mark = " *" if name in marked else ""
            table.add_row(str(i), f"{name}{mark}", detail)
        return table

    def _resolve(self, token: str, options: Sequence[Option]) -> str:
        names = [n for n, _ in options]
        if token.isdigit() and 1 <= int(token) <= len(names):
            return names[int(token) - 1]
        if token in names:
            return token
        raise ValidationError(f"Unknown selection: {token}")

    def choose_one(self, title: str, message: str, options: Sequence[Option], *, default: Optional[str] = None) -> str:
        self.console.print(Panel(message, title=title, expand=False))
        self.console.print(self._options_table(options, [default] if default else []))
        while True:
            token = self._guard(Prompt.ask, "Select", default=default or "", console=self.console).strip()
            try:
                return self._resolve(token, options)
            except ValidationError as e:
                self.console.print(f"[red]{e}[/red]")

    def choose_many(
        self, title: str, message: str, options: Sequence[Option], *, defaults: Sequence[str] = ()
    ) -> List[str]:
        self.console.print(Panel(message + "\n(space or comma separated; '-' for none)", title=title, expand=False))
        self.console.print(self._options_table(options, defaults))
        while True:
            raw = self._guard(Prompt.ask, "Select", default=" ".join(defaults), console=self.console)
            tokens = [t for t in raw.replace(",", " ").split() if t and t != "-"]
            try:
                picked = [self._resolve(t, options) for t in tokens]
            except ValidationError as e:
                self.console.print(f"[red]{e}[/red]")
                continue
            # keep option order, drop duplicates
            return [n for n, _ in options if n in picked]

    def show(self, title: str, text: str) -> None:
        self.console.print(Panel(text, title=title, expand=False))


class AutoPrompter:
    """Non-interactive prompter: scripted answers by title, otherwise defaults.

    ``assume_yes`` answers every confirmation not in ``answers``.
    """

    def __init__(self, *, assume_yes: bool = True, answers: Optional[Mapping[str, Any]] = None) -> None:
        self.assume_yes = assume_yes
        self.answers: Dict[str, Any] = dict(answers or {})
        self.asked: List[str] = []
        self.shown: List[Tuple[str, str]] = []

    def _answer(self, title: str, fallback: Any) -> Any:
        self.asked.append(title)
        value = self.answers.get(title, fallback)
        if isinstance(value, BaseException):
            raise value
        return value

    def confirm(self, title: str, message: str, *, default: bool = True) -> bool:
        return bool(self._answer(title, self.assume_yes))

    def ask(self, title: str, message: str, *, default: str = "", secret: bool = False) -> str:
        return str(self._answer(title, default))

    def ask_int(self, title: str, message: str, *, default: int, minimum: int = 0) -> int:
        value = int(self._answer(title, default))
        if value < minimum:
            raise ValidationError(f"{title}: value must be >= {minimum}, got {value}")
        return value

    def choose_one(self, title: str, message: str, options: Sequence[Option], *, default: Optional[str] = None) -> str:
        fallback = default if default else (options[0][0] if options else "")
        value = str(self._answer(title, fallback))
        if value not in [n for n, _ in options]:
            raise ValidationError(f"{title}: {value!r} is not one of the offered options")
        return value

    def choose_many(
        self, title: str, message: str, options: Sequence[Option], *, defaults: Sequence[str] = ()
    ) -> List[str]:
        picked = list(self._answer(title, list(defaults)))
        names = [n for n, _ in options]
        unknown = [p for p in picked if p not in names]
        if unknown:
            raise ValidationError(f"{title}: not offered: {', '.join(unknown)}")
        return [n for n in names if n in picked]

    def show(self, title: str, text: str) -> None:
        self.shown.append((title, text))
        logger.info("%s:\n%s", title, text)
