"""Pass-through NIC assignment to sensor VMs.

Assignment is best-effort: an unparsable address or a failed attach for one
device never stops the remaining devices from being processed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple, TypeVar

from .errors import PartialFailure, PCIAddressError
from .lib.pci import PCIAddress
from .lib.virsh import Hypervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def split_positional(items: Sequence[T], n: int) -> List[List[T]]:
    """First item -> first bucket, second -> second, ... (wrapping)."""

    buckets: List[List[T]] = [[] for _ in range(max(n, 0))]
    if not buckets:
        return buckets
    for i, item in enumerate(items):
        buckets[i % n].append(item)
    return buckets


def parse_addresses(texts: Sequence[str]) -> Tuple[List[PCIAddress], List[str]]:
    ok: List[PCIAddress] = []
    bad: List[str] = []
    for text in texts:
        try:
            ok.append(PCIAddress.parse(text))
        except PCIAddressError as e:
            logger.error("%s (skipped)", e)
            bad.append(text)
    return ok, bad


@dataclass
class AssignmentReport:
    attached: List[Tuple[str, PCIAddress]] = field(default_factory=list)
    already_present: List[Tuple[str, PCIAddress]] = field(default_factory=list)
    invalid: List[Tuple[str, str]] = field(default_factory=list)
    failed: List[Tuple[str, PCIAddress, str]] = field(default_factory=list)
    missing_vms: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            items = [f"{vm}:{addr}" for vm, addr, _ in self.failed]
            raise PartialFailure(f"{len(self.failed)} device attachment(s) failed: {', '.join(items)}", items)


class DeviceAssignmentManager:
    def __init__(self, hypervisor: Hypervisor) -> None:
        self.hypervisor = hypervisor

    def assign(self, assignments: Mapping[str, Sequence[str]]) -> AssignmentReport:
        """Attach each VM's devices unless the VM already has them."""

        report = AssignmentReport()
        for vm, texts in assignments.items():
            addresses, bad = parse_addresses(texts)
            report.invalid.extend((vm, b) for b in bad)
            if not addresses:
                logger.info("%s: no pass-through devices to attach", vm)
                continue

            if not self.hypervisor.exists(vm):
                logger.warning("%s: VM not found, skipping %d device(s)", vm, len(addresses))
                report.missing_vms.append(vm)
                continue

            present = set(self.hypervisor.hostdev_addresses(vm))
            for addr in addresses:
                if addr in present:
                    logger.info("%s: PCI device %s is already attached", vm, addr)
                    report.already_present.append((vm, addr))
                    continue

                logger.info("%s: attaching PCI device %s", vm, addr)
                r = self.hypervisor.attach_hostdev(vm, addr)
                if not r.ok:
                    msg = (r.stderr or r.stdout or f"rc={r.returncode}").strip()
                    logger.error("%s: attach of %s failed: %s", vm, addr, msg)
                    report.failed.append((vm, addr, msg))
                    continue
                present.add(addr)
                report.attached.append((vm, addr))

        logger.info(
            "Device assignment: attached=%d already=%d invalid=%d failed=%d",
            len(report.attached),
            len(report.already_present),
            len(report.invalid),
            len(report.failed),
        )
        return report

    def attached_counts(self, vms: Sequence[str]) -> Dict[str, int]:
        return {vm: len(self.hypervisor.hostdev_addresses(vm)) for vm in vms}
