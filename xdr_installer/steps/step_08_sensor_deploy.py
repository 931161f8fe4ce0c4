from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from ..allocator import parse_cpu_list
from ..config_store import Configuration
from ..errors import UserCancelled, ValidationError
from ..lib.domain_xml import DomainSpec, NetworkInterface, domain_xml
from ..pipeline import StepContext
from .common import require_config, vm_targets
from .step_07_sensor_download import find_local_image, image_name

logger = logging.getLogger(__name__)

# space left free on the per-VM LV next to the disk image
DISK_HEADROOM_GB = 10


def vm_interfaces(cfg: Configuration, index: int) -> List[NetworkInterface]:
    if cfg["SENSOR_NET_MODE"] == "nat":
        ifaces = [NetworkInterface("network", "default")]
    else:
        ifaces = [NetworkInterface("bridge", "br-data")]

    if cfg["SPAN_ATTACH_MODE"] == "bridge":
        all_span = cfg.words("SPAN_NICS")
        for nic in cfg.words(cfg.vm_key("SPAN_NICS", index)):
            if nic in all_span:
                ifaces.append(NetworkInterface("bridge", f"br-span{all_span.index(nic)}"))
    return ifaces


def build_domain(cfg: Configuration, index: int, vm: str, disk_path: str) -> DomainSpec:
    cpuset = parse_cpu_list(cfg[cfg.vm_key("SENSOR_CPUSET", index)])
    numa = cfg[cfg.vm_key("SENSOR_NUMA_NODE", index)]
    return DomainSpec(
        name=vm,
        vcpus=cfg["SENSOR_VCPUS_PER_VM"],
        memory_mb=cfg["SENSOR_MEMORY_MB_PER_VM"],
        disk_path=disk_path,
        cpuset=tuple(cpuset),
        numa_node=int(numa) if numa.strip() else None,
        interfaces=tuple(vm_interfaces(cfg, index)),
    )


class SensorDeployStep:
    step_id = "08_sensor_deploy"
    display_name = "Sensor VM Deployment"

    def run(self, ctx: StepContext) -> None:
        cfg = ctx.config
        require_config(
            cfg, "SENSOR_VCPUS_PER_VM", "SENSOR_MEMORY_MB_PER_VM", "SENSOR_LV_SIZE_GB_PER_VM", hint="run STEP 01 first"
        )
        targets = vm_targets(cfg)
        for index, _ in targets:
            require_config(cfg, cfg.vm_key("SENSOR_CPUSET", index), hint="run STEP 01 first")

        image_dir = cfg["SENSOR_IMAGE_DIR"]
        local = find_local_image(Path(ctx.host_path(image_dir)))
        name = local.name if local is not None else image_name(cfg["SENSOR_VERSION"])
        image = f"{image_dir}/{name}"
        if not ctx.dry_run and not Path(ctx.host_path(image)).is_file():
            raise ValidationError(f"Sensor image {image} not found (run STEP 07 first)")

        existing = [vm for _, vm in targets if ctx.hypervisor.exists(vm)]
        if existing and not ctx.prompter.confirm(
            "STEP 08 - Existing VM",
            f"Sensor VM(s) already defined: {', '.join(existing)}\n\n"
            "They will be force-stopped, undefined and redeployed. Continue?",
            default=False,
        ):
            raise UserCancelled(f"Operator kept existing VM(s): {', '.join(existing)}")

        for index, vm in targets:
            if vm in existing:
                ctx.hypervisor.destroy(vm)
                ctx.hypervisor.undefine(vm)

            disk = f"{image_dir}/{vm}/{vm}.qcow2"
            ctx.executor.run(["cp", "--sparse=always", image, disk])
            size_gb = cfg["SENSOR_LV_SIZE_GB_PER_VM"] - DISK_HEADROOM_GB
            ctx.executor.run(["qemu-img", "resize", disk, f"{size_gb}G"], check=False)

            spec = build_domain(cfg, index, vm, disk)
            ctx.hypervisor.define(domain_xml(spec))
            ctx.hypervisor.start(vm)
            logger.info("%s deployed: vcpus=%d memory=%dMB cpuset=%s", vm, spec.vcpus, spec.memory_mb, list(spec.cpuset))
