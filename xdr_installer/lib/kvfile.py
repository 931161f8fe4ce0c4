"""Shell-style ``KEY="value"`` files.

This is the format the installer's state and config files have always used,
so operators can still ``source`` them. Values are double-quoted with
``\\``, ``"``, ``$`` and backtick escaped; ``\\n`` and ``\\r`` are written
as escapes. Lines are split on ``\\n`` only, so other line-break characters
stay inside the quoted value.
"""

from __future__ import annotations

import re
from typing import Dict, Mapping

_LINE_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")

_ESCAPES = {"\\": "\\\\", '"': '\\"', "$": "\\$", "`": "\\`", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", '"': '"', "$": "$", "`": "`", "n": "\n", "r": "\r"}


def escape_value(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def unescape_value(raw: str) -> str:
    out = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and i + 1 < len(raw) and raw[i + 1] in _UNESCAPES:
            out.append(_UNESCAPES[raw[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _parse_value(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == '"' and raw[-1] == '"':
        return unescape_value(raw[1:-1])
    if len(raw) >= 2 and raw[0] == "'" and raw[-1] == "'":
        return raw[1:-1]
    # unquoted: cut trailing comment
    return raw.split(" #", 1)[0].strip()


def loads(text: str) -> Dict[str, str]:
    data: Dict[str, str] = {}
    for line in text.split("\n"):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        m = _LINE_RE.match(line)
        if not m:
            continue
        data[m.group(1)] = _parse_value(m.group(2))
    return data


def dumps(data: Mapping[str, object], *, header: str | None = None) -> str:
    lines = []
    if header:
        lines.extend(f"# {h}" for h in header.splitlines())
    for key, value in data.items():
        if value is None:
            text = ""
        elif isinstance(value, bool):
            text = "1" if value else "0"
        else:
            text = str(value)
        lines.append(f'{key}="{escape_value(text)}"')
    return "\n".join(lines) + "\n"
