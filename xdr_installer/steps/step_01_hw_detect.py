from __future__ import annotations

import logging
from typing import Dict, List, Tuple

from ..allocator import allocate, default_total_vcpus
from ..devices import split_positional
from ..errors import StepNotApplicable, ValidationError
from ..pipeline import StepContext
from .common import vm_targets

logger = logging.getLogger(__name__)

HOST_RESERVED_MEMORY_GB = 12
MIN_LV_SIZE_GB_PER_VM = 80


class HardwareDetectStep:
    """Select NICs and split CPU/NUMA/memory/disk between the sensor VMs.

    The result is persisted into the configuration (explicit cpusets, NUMA
    nodes, per-VM SPAN PCI lists) so later steps never recompute it.
    """

    step_id = "01_hw_detect"
    display_name = "Hardware / NIC / CPU / Memory / SPAN NIC Selection"

    def run(self, ctx: StepContext) -> None:
        cfg = ctx.config
        targets = vm_targets(cfg)
        vm_count = len(targets)

        if self._has_selection(ctx) and ctx.prompter.confirm(
            "STEP 01 - Reuse Existing Selection",
            "HOST/DATA/SPAN NICs and VM resources are already configured:\n\n"
            f"HOST_NIC={cfg['HOST_NIC']}\nDATA_NIC={cfg['DATA_NIC']}\nSPAN_NICS={cfg['SPAN_NICS']}\n\n"
            "Reuse the existing selection?",
        ):
            raise StepNotApplicable("existing hardware selection reused", advance_state=True)

        topo = ctx.probe.numa_topology()

        total_vcpus = ctx.prompter.ask_int(
            "STEP 01 - Sensor vCPU Configuration",
            f"Total vCPUs for all sensor VMs (split across {vm_count}).\n\nHost logical CPUs: {topo.total_vcpus}",
            default=cfg["SENSOR_TOTAL_VCPUS"] or default_total_vcpus(topo.total_vcpus),
            minimum=vm_count,
        )

        host_mem_gb = topo.total_memory_mb // 1024
        default_mem_gb = host_mem_gb - HOST_RESERVED_MEMORY_GB
        if default_mem_gb <= 0:
            logger.warning("Host memory (%dGB) is low; suggesting 4GB per VM", host_mem_gb)
            default_mem_gb = 4 * vm_count
        total_mem_gb = ctx.prompter.ask_int(
            "STEP 01 - Sensor Memory Configuration",
            f"Total memory (GB) for all sensor VMs.\n\nHost memory: {host_mem_gb}GB",
            default=(cfg["SENSOR_TOTAL_MEMORY_MB"] // 1024) or default_mem_gb,
            minimum=1,
        )

        total_disk_gb = ctx.prompter.ask_int(
            "STEP 01 - Sensor Storage Size Configuration",
            f"Total LV size (GB) in volume group {cfg['LV_VOLUME_GROUP']} for all sensor VMs.\n\n"
            f"Minimum {MIN_LV_SIZE_GB_PER_VM}GB per VM.",
            default=cfg["SENSOR_TOTAL_LV_SIZE_GB"] or 100 * vm_count,
            minimum=MIN_LV_SIZE_GB_PER_VM * vm_count,
        )

        host_nic, data_nic, span_nics = self._select_nics(ctx)

        span_pcis: List[Tuple[str, str]] = []
        for nic in span_nics:
            pci = ctx.probe.nic_pci_address(nic)
            if pci is None:
                logger.warning("SPAN NIC %s has no PCI address; it will not be passed through", nic)
                continue
            span_pcis.append((nic, pci))

        plan = allocate(
            total_vcpus=total_vcpus,
            total_memory_mb=total_mem_gb * 1024,
            total_disk_gb=total_disk_gb,
            vm_count=vm_count,
            topology=topo,
        )
        for d in plan.discrepancies:
            logger.warning("Allocation discrepancy: %s", d)

        per_vm_span = self._split_span(ctx, span_pcis, vm_count)

        values: Dict[str, object] = {
            "HOST_NIC": host_nic,
            "DATA_NIC": data_nic,
            "SPAN_NICS": " ".join(span_nics),
            "SENSOR_TOTAL_VCPUS": total_vcpus,
            "SENSOR_VCPUS_PER_VM": plan.per_vm_vcpus,
            "SENSOR_TOTAL_MEMORY_MB": total_mem_gb * 1024,
            "SENSOR_MEMORY_MB_PER_VM": plan.allocations[0].memory_mb,
            "SENSOR_TOTAL_LV_SIZE_GB": total_disk_gb,
            "SENSOR_LV_SIZE_GB_PER_VM": plan.allocations[0].disk_gb,
        }
        for (index, vm), alloc, span in zip(targets, plan.allocations, per_vm_span):
            values[cfg.vm_key("SENSOR_CPUSET", index)] = alloc.cpuset_text
            values[cfg.vm_key("SENSOR_NUMA_NODE", index)] = "" if alloc.numa_node is None else str(alloc.numa_node)
            values[cfg.vm_key("SPAN_NICS", index)] = " ".join(nic for nic, _ in span)
            values[cfg.vm_key("SENSOR_SPAN_PCIS", index)] = " ".join(pci for _, pci in span)
        cfg.update(values)

        ctx.prompter.show("STEP 01 Completed", self._summary(ctx, targets))

    def _has_selection(self, ctx: StepContext) -> bool:
        cfg = ctx.config
        keys = ["HOST_NIC", "SPAN_NICS", "SENSOR_VCPUS_PER_VM", cfg.vm_key("SENSOR_CPUSET", 0)]
        if cfg["SENSOR_NET_MODE"] == "bridge":
            keys.append("DATA_NIC")
        return all(cfg[k] for k in keys)

    def _select_nics(self, ctx: StepContext) -> Tuple[str, str, List[str]]:
        nics = ctx.probe.list_nics()
        if not nics:
            raise ValidationError("No NIC candidates found (check /sys/class/net)")

        def describe(nic: str) -> str:
            pci = ctx.probe.nic_pci_address(nic) or "-"
            return f"pci={pci} mac={ctx.probe.nic_mac(nic) or '-'} speed={ctx.probe.nic_speed(nic) or '-'}"

        options = [(n, describe(n)) for n in nics]
        bridge_mode = ctx.config["SENSOR_NET_MODE"] == "bridge"

        host_nic = ctx.prompter.choose_one(
            "STEP 01 - HOST NIC Selection",
            "Management NIC (renamed to 'host').",
            options,
            default=ctx.config["HOST_NIC"] or None,
        )
        remaining = [o for o in options if o[0] != host_nic]

        data_nic = ""
        if bridge_mode:
            if not remaining:
                raise ValidationError("Bridge mode needs a DATA NIC besides the HOST NIC")
            data_nic = ctx.prompter.choose_one(
                "STEP 01 - Data NIC Selection",
                "Data NIC (renamed to 'data', bridged as br-data).",
                remaining,
                default=ctx.config["DATA_NIC"] if ctx.config["DATA_NIC"] in dict(remaining) else None,
            )
            remaining = [o for o in remaining if o[0] != data_nic]

        span_nics = ctx.prompter.choose_many(
            "STEP 01 - SPAN NIC Selection",
            "NICs receiving mirrored traffic for all sensor VMs.",
            remaining,
            defaults=[n for n in ctx.config.words("SPAN_NICS") if n in dict(remaining)],
        )
        if not span_nics:
            raise ValidationError("At least one SPAN NIC must be selected")
        return host_nic, data_nic, span_nics

    def _split_span(
        self, ctx: StepContext, span_pcis: List[Tuple[str, str]], vm_count: int
    ) -> List[List[Tuple[str, str]]]:
        """Operator picks the mds2 SPAN NICs, mds keeps the rest.

        An empty pick falls back to positional order across the VMs.
        """

        if vm_count < 2 or len(span_pcis) < 2:
            return split_positional(span_pcis, vm_count)

        names = [nic for nic, _ in span_pcis]
        for_mds2 = ctx.prompter.choose_many(
            "STEP 01 - mds2 SPAN NIC Selection",
            "SPAN NICs to assign to mds2 (second sensor).\n\n"
            "NICs not selected go to mds (first sensor). Select none to split them in order.",
            [(nic, f"pci={pci}") for nic, pci in span_pcis],
            defaults=[n for n in ctx.config.words("SPAN_NICS_MDS2") if n in names],
        )
        if not for_mds2:
            logger.info("No explicit mds2 SPAN selection; splitting SPAN NICs in order")
            return split_positional(span_pcis, vm_count)

        logger.info("SPAN NICs for mds2 selected by operator: %s", " ".join(for_mds2))
        return [
            [(nic, pci) for nic, pci in span_pcis if nic not in for_mds2],
            [(nic, pci) for nic, pci in span_pcis if nic in for_mds2],
        ]

    def _summary(self, ctx: StepContext, targets) -> str:
        cfg = ctx.config
        lines = [
            f"HOST_NIC : {cfg['HOST_NIC']}",
            f"DATA_NIC : {cfg['DATA_NIC'] or '(none)'}",
            f"SPAN_NICS: {cfg['SPAN_NICS']}",
            f"Per VM   : {cfg['SENSOR_VCPUS_PER_VM']} vCPU, {cfg['SENSOR_MEMORY_MB_PER_VM']}MB, "
            f"{cfg['SENSOR_LV_SIZE_GB_PER_VM']}GB",
            "",
        ]
        for index, vm in targets:
            lines.append(
                f"{vm}: cpuset={cfg[cfg.vm_key('SENSOR_CPUSET', index)]} "
                f"numa={cfg[cfg.vm_key('SENSOR_NUMA_NODE', index)] or '-'} "
                f"span={cfg[cfg.vm_key('SENSOR_SPAN_PCIS', index)] or '-'}"
            )
        return "\n".join(lines)
