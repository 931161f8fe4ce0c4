from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from ..errors import ExternalCommandFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


Runner = Callable[[List[str], Optional[str]], CmdResult]


def fmt_argv(argv: Sequence[str], redact: Iterable[str] = ()) -> str:
    text = " ".join(shlex.quote(a) for a in argv)
    for secret in redact:
        if secret:
            text = text.replace(secret, "***")
    return text


def subprocess_runner(argv: List[str], input_text: Optional[str] = None) -> CmdResult:
    try:
        p = subprocess.run(
            argv,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(os.environ, LC_ALL="C", DEBIAN_FRONTEND="noninteractive"),
        )
    except FileNotFoundError as e:
        return CmdResult(argv=argv, returncode=127, stdout="", stderr=str(e))
    return CmdResult(argv=argv, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)


class Executor:
    """Issues mutating actions, or simulates them.

    - ``run``/``write_text``/``append_line_if_missing`` are mutations: in
      simulate mode they are only described (logged and recorded in
      ``actions``) and report success.
    - ``query`` is read-only and always executes, so probes see the real host
      in both modes.

    Callers get the same ``CmdResult`` shape either way.
    """

    def __init__(self, *, simulate: bool, runner: Runner = subprocess_runner) -> None:
        self.simulate = simulate
        self.runner = runner
        self.actions: list[str] = []

    def _record(self, description: str) -> None:
        self.actions.append(description)
        if self.simulate:
            logger.info("[DRY-RUN] %s", description)
        else:
            logger.info("CMD %s", description)

    def run(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        input_text: str | None = None,
        redact: Iterable[str] = (),
    ) -> CmdResult:
        argv_list = list(argv)
        self._record(fmt_argv(argv_list, redact))

        if self.simulate:
            return CmdResult(argv=argv_list, returncode=0, stdout="", stderr="", simulated=True)

        r = self.runner(argv_list, input_text)
        if r.stdout:
            logger.debug("STDOUT %s", r.stdout.strip())
        if r.stderr:
            logger.debug("STDERR %s", r.stderr.strip())

        if check and r.returncode != 0:
            raise ExternalCommandFailure(
                f"Command failed ({r.returncode}): {fmt_argv(argv_list, redact)}\n{r.stderr.strip()}",
                result=r,
            )
        return r

    def query(self, argv: Sequence[str], *, input_text: str | None = None) -> CmdResult:
        argv_list = list(argv)
        logger.debug("QUERY %s", fmt_argv(argv_list))
        return self.runner(argv_list, input_text)

    def write_text(self, path: str, contents: str, *, mode: int | None = None) -> None:
        self._record(f"write {path} ({len(contents)} bytes)")
        if self.simulate:
            logger.debug("[DRY-RUN] %s contents:\n%s", path, contents)
            return

        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(p.parent), prefix=f".{p.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(contents)
            if mode is not None:
                os.chmod(tmp, mode)
            os.replace(tmp, p)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def append_line_if_missing(self, path: str, line: str, *, marker: str | None = None) -> bool:
        """Append ``line`` unless a line containing ``marker`` (default: the line) exists.

        Returns True if the line was (or would be) appended.
        """

        needle = marker if marker is not None else line.strip()
        p = Path(path)
        existing = p.read_text(encoding="utf-8") if p.exists() else ""
        if any(needle in ln for ln in existing.splitlines()):
            logger.info("%s: entry already present (%s)", path, needle)
            return False

        sep = "" if (not existing or existing.endswith("\n")) else "\n"
        self.write_text(path, existing + sep + line.rstrip("\n") + "\n")
        return True
