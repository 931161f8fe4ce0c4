from __future__ import annotations

import re
from dataclasses import dataclass

from ..errors import PCIAddressError

_FULL_RE = re.compile(r"^([0-9a-fA-F]{4}):([0-9a-fA-F]{2}):([0-9a-fA-F]{2})\.([0-7])$")
_SHORT_RE = re.compile(r"^([0-9a-fA-F]{2}):([0-9a-fA-F]{2})\.([0-7])$")


@dataclass(frozen=True, order=True)
class PCIAddress:
    domain: int
    bus: int
    slot: int
    function: int

    @classmethod
    def parse(cls, text: str) -> "PCIAddress":
        """Parse ``DDDD:BB:SS.F`` or ``BB:SS.F`` (domain 0000)."""

        s = (text or "").strip()
        m = _FULL_RE.match(s)
        if m:
            d, b, sl, f = m.groups()
            return cls(int(d, 16), int(b, 16), int(sl, 16), int(f))
        m = _SHORT_RE.match(s)
        if m:
            b, sl, f = m.groups()
            return cls(0, int(b, 16), int(sl, 16), int(f))
        raise PCIAddressError(f"Unsupported PCI address format: {text!r}")

    def __str__(self) -> str:
        return f"{self.domain:04x}:{self.bus:02x}:{self.slot:02x}.{self.function:x}"

    def xml_attrs(self) -> dict[str, str]:
        return {
            "domain": f"0x{self.domain:04x}",
            "bus": f"0x{self.bus:02x}",
            "slot": f"0x{self.slot:02x}",
            "function": f"0x{self.function:x}",
        }
