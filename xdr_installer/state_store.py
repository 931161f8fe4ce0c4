from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .lib import kvfile

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    if ext in {"conf", "state", "env"}:
        return "kv"
    # Default to JSON for unknown extensions.
    return "json"


def load_document(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    fmt = _detect_format(p)
    text = p.read_text(encoding="utf-8")
    data: Any

    if fmt in {"yaml", "yml"}:
        data = yaml.safe_load(text) or {}
    elif fmt == "kv":
        data = kvfile.loads(text)
    else:
        data = json.loads(text) if text.strip() else {}

    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object/dict, got {type(data)}")

    return data


def save_document(path: str, data: Dict[str, Any], *, header: str | None = None) -> None:
    """Rewrite the whole file (temp file + rename, never a partial write)."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    fmt = _detect_format(p)
    if fmt in {"yaml", "yml"}:
        text = yaml.safe_dump(data, sort_keys=False)
    elif fmt == "kv":
        text = kvfile.dumps(data, header=header)
    else:
        text = json.dumps(data, indent=2, sort_keys=True) + "\n"

    fd, tmp = tempfile.mkstemp(dir=str(p.parent), prefix=f".{p.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, p)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


@dataclass(frozen=True)
class InstallationState:
    last_completed_step_id: Optional[str] = None
    last_run_timestamp: Optional[str] = None


class StateStore:
    """Persists the "last completed step" marker.

    Stored as ``LAST_COMPLETED_STEP`` / ``LAST_RUN_TIME``; empty or missing
    values mean "nothing completed yet".
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def load(self) -> InstallationState:
        try:
            raw = load_document(self.path)
        except (ValueError, yaml.YAMLError) as e:
            logger.warning("State file %s is unreadable (%s); treating as fresh install", self.path, e)
            return InstallationState()

        step_id = str(raw.get("LAST_COMPLETED_STEP") or "").strip() or None
        ts = str(raw.get("LAST_RUN_TIME") or "").strip() or None
        return InstallationState(last_completed_step_id=step_id, last_run_timestamp=ts)

    def save(self, step_id: str, *, now: Optional[datetime] = None) -> InstallationState:
        ts = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        save_document(self.path, {"LAST_COMPLETED_STEP": step_id, "LAST_RUN_TIME": ts})
        logger.info("State saved: LAST_COMPLETED_STEP=%s LAST_RUN_TIME=%s", step_id, ts)
        return InstallationState(last_completed_step_id=step_id, last_run_timestamp=ts)

