from __future__ import annotations

import logging
from typing import Dict, List

from ..allocator import parse_cpu_list
from ..devices import DeviceAssignmentManager
from ..errors import ValidationError
from ..pipeline import StepContext
from .common import vm_targets

logger = logging.getLogger(__name__)


class SensorPassthroughStep:
    """Attach SPAN NICs as PCI hostdevs and pin each VM to its cpuset / NUMA node.

    All changes are made with ``--config`` while the VM is shut off, then the
    VM is started again. Device attach failures are collected and reported
    after every VM has been restarted.
    """

    step_id = "09_sensor_passthrough"
    display_name = "PCI Passthrough / CPU Affinity"

    def run(self, ctx: StepContext) -> None:
        cfg = ctx.config
        hv = ctx.hypervisor
        targets = vm_targets(cfg)

        missing = [vm for _, vm in targets if not hv.exists(vm)]
        if missing:
            raise ValidationError(f"Sensor VM(s) not defined: {', '.join(missing)} (run STEP 08 first)")

        for _, vm in targets:
            hv.shutdown_and_wait(vm)

        assignments: Dict[str, List[str]] = {}
        if cfg["SPAN_ATTACH_MODE"] == "pci":
            assignments = {vm: cfg.words(cfg.vm_key("SENSOR_SPAN_PCIS", index)) for index, vm in targets}
        else:
            logger.info("SPAN_ATTACH_MODE=%s: no PCI passthrough", cfg["SPAN_ATTACH_MODE"])
        report = DeviceAssignmentManager(hv).assign(assignments)

        for index, vm in targets:
            self._pin(ctx, index, vm)

        for _, vm in targets:
            hv.start(vm)

        for vm, count in DeviceAssignmentManager(hv).attached_counts([vm for _, vm in targets]).items():
            logger.info("%s: %d PCI hostdev(s) in definition", vm, count)

        report.raise_for_failures()

    def _pin(self, ctx: StepContext, index: int, vm: str) -> None:
        cfg = ctx.config
        hv = ctx.hypervisor
        cpuset = parse_cpu_list(cfg[cfg.vm_key("SENSOR_CPUSET", index)])
        if not cpuset:
            logger.warning("%s: no cpuset configured, skipping CPU affinity", vm)
            return

        cpuset_text = ",".join(str(c) for c in cpuset)
        vcpus = hv.max_vcpus(vm) or cfg["SENSOR_VCPUS_PER_VM"]
        for i in range(vcpus):
            hv.vcpupin(vm, i, str(cpuset[i % len(cpuset)]))
        hv.emulatorpin(vm, cpuset_text)

        node = cfg[cfg.vm_key("SENSOR_NUMA_NODE", index)].strip()
        if node:
            hv.numatune(vm, mode="strict", nodeset=node)
        logger.info("%s: %d vCPUs pinned to %s (numa node %s)", vm, vcpus, cpuset_text, node or "-")
