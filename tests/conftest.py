from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from xdr_installer.config_store import Configuration
from xdr_installer.lib.command import CmdResult
from xdr_installer.lib.pci import PCIAddress
from xdr_installer.lib.prompt import AutoPrompter
from xdr_installer.pipeline import StepContext


class RecordingRunner:
    """Stand-in for subprocess: records argv, answers by longest argv prefix."""

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], Tuple[int, str]]] = None, default_rc: int = 1):
        self.responses = dict(responses or {})
        self.default_rc = default_rc
        self.calls: List[List[str]] = []

    def __call__(self, argv: List[str], input_text: Optional[str] = None) -> CmdResult:
        self.calls.append(list(argv))
        best: Optional[Tuple[str, ...]] = None
        for prefix in self.responses:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        rc, out = self.responses[best] if best is not None else (self.default_rc, "")
        return CmdResult(argv=list(argv), returncode=rc, stdout=out, stderr="" if rc == 0 else "error")

    def commands(self) -> List[str]:
        return [" ".join(c) for c in self.calls]


class FakeHypervisor:
    """In-memory VMs with hostdev lists; ``fail`` makes attach fail for those addresses."""

    def __init__(self, vms: Sequence[str] = ("mds", "mds2"), fail: Sequence[str] = ()):
        self.devices: Dict[str, Set[PCIAddress]] = {vm: set() for vm in vms}
        self.fail = {PCIAddress.parse(a) for a in fail}
        self.attach_calls: List[Tuple[str, PCIAddress]] = []

    def exists(self, vm: str) -> bool:
        return vm in self.devices

    def hostdev_addresses(self, vm: str) -> Set[PCIAddress]:
        return set(self.devices.get(vm, set()))

    def attach_hostdev(self, vm: str, address: PCIAddress) -> CmdResult:
        self.attach_calls.append((vm, address))
        if address in self.fail:
            return CmdResult(argv=["virsh", "attach-device", vm], returncode=1, stdout="", stderr="device busy")
        self.devices[vm].add(address)
        return CmdResult(argv=["virsh", "attach-device", vm], returncode=0, stdout="", stderr="")


NICS = {
    "eno1": "0000:03:00.0",
    "eno2": "0000:03:00.1",
    "ens1f0": "0000:8b:00.0",
    "ens1f1": "0000:8b:00.1",
}


def build_host_tree(root: Path, *, numa: Sequence[str] = ("0-23", "24-47"), mem_kb: int = 64 * 1024 * 1024) -> Path:
    """Minimal /sys, /proc and /etc for the hardware probe."""

    pci_dir = root / "sys/devices/pci0000:00"
    net = root / "sys/class/net"
    net.mkdir(parents=True)
    for i, (nic, pci) in enumerate(NICS.items()):
        dev = pci_dir / pci
        dev.mkdir(parents=True)
        (net / nic).mkdir()
        os.symlink(dev, net / nic / "device")
        (net / nic / "address").write_text(f"52:54:00:00:00:0{i}\n")
        (net / nic / "speed").write_text("10000\n")
    (net / "lo").mkdir()
    (net / "virbr0").mkdir()

    for n, cpus in enumerate(numa):
        node = root / f"sys/devices/system/node/node{n}"
        node.mkdir(parents=True)
        (node / "cpulist").write_text(cpus + "\n")

    (root / "proc").mkdir()
    (root / "proc/meminfo").write_text(f"MemTotal:       {mem_kb} kB\nMemFree:        1024 kB\n")
    (root / "proc/cmdline").write_text("BOOT_IMAGE=/vmlinuz ro quiet\n")
    (root / "proc/swaps").write_text("Filename Type Size Used Priority\n/swap.img file 4194300 0 -2\n")

    (root / "etc").mkdir()
    (root / "etc/os-release").write_text('NAME="Ubuntu"\nVERSION_ID="24.04"\n')
    (root / "etc/fstab").write_text("/dev/sda2 / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n")
    return root


@pytest.fixture
def host_root(tmp_path: Path) -> Path:
    return build_host_tree(tmp_path / "host")


@pytest.fixture
def make_ctx(tmp_path: Path, host_root: Path):
    def _make(
        runner: Optional[RecordingRunner] = None,
        *,
        answers: Optional[Dict[str, object]] = None,
        assume_yes: bool = True,
        dry_run: bool = True,
        config: Optional[Dict[str, object]] = None,
    ) -> StepContext:
        cfg = Configuration(str(tmp_path / "xdr_install.conf"))
        cfg.update({"DRY_RUN": dry_run, **(config or {})})
        prompter = AutoPrompter(assume_yes=assume_yes, answers=answers)
        return StepContext.create(cfg, prompter, runner=runner or RecordingRunner(), root=str(host_root))

    return _make
