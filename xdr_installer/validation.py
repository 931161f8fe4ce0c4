"""Read-only checks of the current host state.

Nothing here mutates the host; every command goes through ``Executor.query``
so the checks behave the same in dry-run and execute mode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .errors import ValidationError
from .lib import netcfg
from .pipeline import StepContext
from .steps.common import read_host_file, service_active, vm_targets
from .steps.step_02_hwe_kernel import hwe_package
from .steps.step_05_kernel_tuning import IOMMU_ARGS
from .steps.step_07_sensor_download import lv_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationCheck:
    name: str
    ok: bool
    detail: str = ""


def run_validation(ctx: StepContext) -> List[ValidationCheck]:
    cfg = ctx.config
    probe = ctx.probe
    hv = ctx.hypervisor
    checks: List[ValidationCheck] = []

    def add(name: str, ok: bool, detail: str = "") -> None:
        checks.append(ValidationCheck(name, ok, detail))

    pkg = hwe_package(probe.os_release().get("VERSION_ID", "unknown"))
    add(f"package {pkg}", ctx.packages.is_installed(pkg))

    cmdline = probe.kernel_cmdline()
    add("IOMMU on kernel cmdline", all(arg in cmdline.split() for arg in IOMMU_ARGS.split()), cmdline)

    ksm = probe.ksm_run()
    add("KSM disabled", ksm in (None, "0"), f"/sys/kernel/mm/ksm/run={ksm}")

    swaps = probe.active_swaps()
    add("swap disabled", not swaps, " ".join(swaps))

    add("udev NIC naming", 'NAME:="host"' in (read_host_file(ctx, netcfg.UDEV_RULES_PATH) or ""))
    add("libvirtd active", service_active(ctx, "libvirtd"))

    try:
        targets = vm_targets(cfg)
    except ValidationError as e:
        add("SENSOR_VM_COUNT", False, str(e))
        targets = []

    for index, vm in targets:
        exists = hv.exists(vm)
        add(f"{vm} defined", exists)
        if not exists:
            continue
        state = hv.state(vm)
        add(f"{vm} running", state == "running", state)

        expected = len(cfg.words(cfg.vm_key("SENSOR_SPAN_PCIS", index))) if cfg["SPAN_ATTACH_MODE"] == "pci" else 0
        attached = len(hv.hostdev_addresses(vm))
        add(f"{vm} PCI hostdevs", attached >= expected, f"{attached} attached, {expected} configured")

        cpuset = cfg[cfg.vm_key("SENSOR_CPUSET", index)]
        add(f"{vm} cpuset configured", bool(cpuset), cpuset)

        device = f"/dev/{cfg['LV_VOLUME_GROUP']}/{lv_name(vm)}"
        add(f"{vm} LV present", ctx.executor.query(["lvs", device]).ok, device)

    failed = [c for c in checks if not c.ok]
    logger.info("Validation: %d checks, %d failed", len(checks), len(failed))
    for c in failed:
        logger.warning("Validation failed: %s %s", c.name, c.detail)
    return checks
