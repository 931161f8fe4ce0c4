"""udev naming rules and ifupdown stanzas for the sensor host.

Builders return the full file text; the caller writes it through the executor.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..errors import ValidationError

UDEV_RULES_PATH = "/etc/udev/rules.d/99-custom-ifnames.rules"
INTERFACES_PATH = "/etc/network/interfaces"
INTERFACES_DIR = "/etc/network/interfaces.d"
ROUTING_HOOK_PATH = "/etc/network/if-up.d/xdr-routing"
RT_TABLES_PATH = "/etc/iproute2/rt_tables"

RT_TABLE_LINES = ("1 rt_host", "2 rt_data")


@dataclass(frozen=True)
class HostAddress:
    ip: str
    prefix: int
    gateway: str
    dns: Tuple[str, ...] = ("8.8.8.8",)

    @classmethod
    def parse(cls, cidr: str, gateway: str, dns: str = "8.8.8.8") -> "HostAddress":
        try:
            iface = ipaddress.IPv4Interface(cidr.strip())
            ipaddress.IPv4Address(gateway.strip())
        except ValueError as e:
            raise ValidationError(f"Invalid HOST address {cidr!r} / gateway {gateway!r}: {e}") from e
        return cls(ip=str(iface.ip), prefix=iface.network.prefixlen, gateway=gateway.strip(), dns=tuple(dns.split()))

    @property
    def netmask(self) -> str:
        return str(ipaddress.IPv4Network(f"0.0.0.0/{self.prefix}").netmask)


@dataclass(frozen=True)
class BridgeStanza:
    name: str
    ports: str
    stp: bool = False
    forward_delay: int = 0

    def render(self) -> str:
        return "\n".join(
            [
                f"auto {self.name}",
                f"iface {self.name} inet manual",
                f"    bridge_ports {self.ports}",
                f"    bridge_stp {'on' if self.stp else 'off'}",
                f"    bridge_fd {self.forward_delay}",
                "",
            ]
        )


@dataclass(frozen=True)
class NetworkLayout:
    host_pci: str
    data_pci: Optional[str]
    host: HostAddress
    span: Sequence[Tuple[str, str]] = field(default_factory=tuple)  # (nic name, pci)
    span_bridges: bool = False

    def bridges(self) -> List[Tuple[str, BridgeStanza]]:
        """``(file name, stanza)`` pairs for ``interfaces.d``."""

        out: List[Tuple[str, BridgeStanza]] = []
        if self.data_pci:
            out.append(("00-data.cfg", BridgeStanza("br-data", "data")))
        if self.span_bridges:
            for i, (nic, _) in enumerate(self.span):
                out.append((f"01-span{i}.cfg", BridgeStanza(f"br-span{i}", nic)))
        return out


def udev_rules(layout: NetworkLayout) -> str:
    lines = [
        "# XDR sensor interface naming (generated)",
        f'ACTION=="add", SUBSYSTEM=="net", KERNELS=="{layout.host_pci}", NAME:="host"',
    ]
    if layout.data_pci:
        lines.append(f'ACTION=="add", SUBSYSTEM=="net", KERNELS=="{layout.data_pci}", NAME:="data"')
    for nic, pci in layout.span:
        lines.append(f'ACTION=="add", SUBSYSTEM=="net", KERNELS=="{pci}", NAME:="{nic}"')
    return "\n".join(lines) + "\n"


def interfaces_main(host: HostAddress) -> str:
    return "\n".join(
        [
            "source /etc/network/interfaces.d/*",
            "",
            "auto lo",
            "iface lo inet loopback",
            "",
            "auto host",
            "iface host inet static",
            f"    address {host.ip}",
            f"    netmask {host.netmask}",
            f"    gateway {host.gateway}",
            f"    dns-nameservers {' '.join(host.dns)}",
            "",
        ]
    )


def routing_hook(host: HostAddress) -> str:
    # br-data is an L2-only bridge, so only "host" gets policy routing
    return "\n".join(
        [
            "#!/bin/bash",
            "# XDR sensor policy routing (generated)",
            'IFACE="$1"',
            'case "$IFACE" in',
            "  host)",
            f"    ip route add default via {host.gateway} dev host table rt_host 2>/dev/null || true",
            f"    ip rule add from {host.ip}/32 table rt_host priority 100 2>/dev/null || true",
            f"    ip rule add to {host.ip}/32 table rt_host priority 100 2>/dev/null || true",
            "    ;;",
            "esac",
            "",
        ]
    )


def is_configured(udev_text: Optional[str], interfaces_text: Optional[str], *, with_data: bool = True) -> bool:
    """True when both files already carry the host (and data) naming and stanzas."""

    if not udev_text or not interfaces_text:
        return False
    udev_ok = 'NAME:="host"' in udev_text and (not with_data or 'NAME:="data"' in udev_text)
    lines = [ln.strip() for ln in interfaces_text.splitlines()]
    return udev_ok and "auto host" in lines and "iface host inet static" in lines
