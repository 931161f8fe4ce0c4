from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from ..config_store import VM_NAMES, Configuration
from ..errors import ValidationError
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


def require_config(config: Configuration, *names: str, hint: str = "") -> None:
    missing = [n for n in names if not config[n]]
    if missing:
        msg = f"Missing configuration: {', '.join(missing)}"
        raise ValidationError(f"{msg} ({hint})" if hint else msg)


def vm_targets(config: Configuration) -> List[Tuple[int, str]]:
    """``(index, vm name)`` for the configured VM count."""

    count = int(config["SENSOR_VM_COUNT"])
    if not 1 <= count <= len(VM_NAMES):
        raise ValidationError(f"SENSOR_VM_COUNT must be between 1 and {len(VM_NAMES)}, got {count}")
    return list(enumerate(VM_NAMES[:count]))


def read_host_file(ctx: StepContext, path: str) -> Optional[str]:
    p = Path(ctx.host_path(path))
    try:
        return p.read_text(encoding="utf-8")
    except OSError:
        return None


def backup_file(ctx: StepContext, path: str) -> None:
    target = ctx.host_path(path)
    if not Path(target).exists():
        return
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    ctx.executor.run(["cp", "-a", target, f"{target}.{stamp}.bak"])


def write_host_file(ctx: StepContext, path: str, contents: str, *, mode: Optional[int] = None) -> None:
    ctx.executor.write_text(ctx.host_path(path), contents, mode=mode)


def service_active(ctx: StepContext, unit: str) -> bool:
    return ctx.executor.query(["systemctl", "is-active", "--quiet", unit]).ok
