from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..allocator import HardwareTopology, NumaNode, parse_cpu_list
from .command import Executor

logger = logging.getLogger(__name__)

_NIC_EXCLUDE_RE = re.compile(r"^(lo|virbr|vnet|tap|docker|br-|ovs)")
_PCI_NAME_RE = re.compile(r"^[0-9a-fA-F]{4}:[0-9a-fA-F]{2}:[0-9a-fA-F]{2}\.[0-7]$")


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


class HardwareProbe:
    """Read-only view of host hardware.

    Everything is read from sysfs/procfs (rooted so tests can point it at a
    fake tree); ``lsblk`` is the only command and goes through ``query``.
    """

    def __init__(
        self,
        executor: Executor,
        *,
        sysfs_root: str = "/sys",
        procfs_root: str = "/proc",
        etc_root: str = "/etc",
    ) -> None:
        self.executor = executor
        self.sys = Path(sysfs_root)
        self.proc = Path(procfs_root)
        self.etc = Path(etc_root)

    def list_nics(self) -> List[str]:
        """Candidate physical NICs in discovery (sorted sysfs) order."""

        net = self.sys / "class/net"
        if not net.exists():
            return []
        return [p.name for p in sorted(net.iterdir()) if not _NIC_EXCLUDE_RE.match(p.name)]

    def nic_pci_address(self, nic: str) -> Optional[str]:
        dev = self.sys / "class/net" / nic / "device"
        try:
            name = os.path.basename(os.path.realpath(dev)) if dev.exists() else ""
        except OSError:
            name = ""
        if not _PCI_NAME_RE.match(name):
            logger.warning("%s: PCI address could not be found", nic)
            return None
        return name

    def nic_mac(self, nic: str) -> Optional[str]:
        return _read_text(self.sys / "class/net" / nic / "address")

    def nic_speed(self, nic: str) -> Optional[str]:
        return _read_text(self.sys / "class/net" / nic / "speed")

    def numa_topology(self) -> HardwareTopology:
        node_dir = self.sys / "devices/system/node"
        nodes: List[NumaNode] = []
        if node_dir.exists():
            paths = [p for p in node_dir.glob("node[0-9]*") if p.name[4:].isdigit()]
            for p in sorted(paths, key=lambda x: int(x.name[4:])):
                cpus = _read_text(p / "cpulist")
                if cpus:
                    nodes.append(NumaNode(tuple(parse_cpu_list(cpus))))

        total = sum(len(n.cpu_ids) for n in nodes) or self.total_vcpus()
        topo = HardwareTopology(total_vcpus=total, total_memory_mb=self.total_memory_mb(), numa_nodes=tuple(nodes))
        logger.info("Topology: vcpus=%d memory=%dMB numa_nodes=%d", topo.total_vcpus, topo.total_memory_mb, len(nodes))
        return topo

    def total_vcpus(self) -> int:
        online = _read_text(self.sys / "devices/system/cpu/online")
        if online:
            return len(parse_cpu_list(online))
        return os.cpu_count() or 1

    def total_memory_mb(self) -> int:
        meminfo = _read_text(self.proc / "meminfo") or ""
        for line in meminfo.splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) // 1024
        return 0

    def kernel_cmdline(self) -> str:
        return _read_text(self.proc / "cmdline") or ""

    def os_release(self) -> Dict[str, str]:
        data: Dict[str, str] = {}
        for line in (_read_text(self.etc / "os-release") or "").splitlines():
            if "=" in line:
                k, v = line.split("=", 1)
                data[k.strip()] = v.strip().strip('"')
        return data

    def ksm_run(self) -> Optional[str]:
        return _read_text(self.sys / "kernel/mm/ksm/run")

    def active_swaps(self) -> List[str]:
        lines = (_read_text(self.proc / "swaps") or "").splitlines()[1:]
        return [ln.split()[0] for ln in lines if ln.strip()]

    def block_devices(self) -> List[Dict[str, Any]]:
        r = self.executor.query(["lsblk", "-J", "-b", "-o", "NAME,SIZE,TYPE,MOUNTPOINT,ROTA"])
        if not r.ok or not r.stdout.strip():
            return []
        try:
            return list(json.loads(r.stdout).get("blockdevices") or [])
        except ValueError:
            logger.warning("lsblk returned unparsable JSON")
            return []
