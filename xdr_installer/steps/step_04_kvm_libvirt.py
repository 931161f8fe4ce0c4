from __future__ import annotations

import logging
import os

from ..errors import StepNotApplicable
from ..pipeline import StepContext
from .common import service_active

logger = logging.getLogger(__name__)

KVM_PACKAGES = [
    "qemu-kvm",
    "libvirt-daemon-system",
    "libvirt-clients",
    "bridge-utils",
    "virt-manager",
    "cpu-checker",
    "qemu-utils",
    "virtinst",
    "genisoimage",
    "ovmf",
]


class KvmLibvirtStep:
    step_id = "04_kvm_libvirt"
    display_name = "KVM / Libvirt Installation"

    def run(self, ctx: StepContext) -> None:
        net_mode = ctx.config["SENSOR_NET_MODE"]
        kvm_ok = ctx.executor.query(["kvm-ok"]).ok
        libvirtd_ok = service_active(ctx, "libvirtd")
        logger.info("KVM acceleration: %s, libvirtd active: %s, network mode: %s", kvm_ok, libvirtd_ok, net_mode)

        if kvm_ok and libvirtd_ok and ctx.prompter.confirm(
            "STEP 04 - Already Configured", "KVM and libvirtd are already configured.\n\nSkip this step?"
        ):
            raise StepNotApplicable("KVM/libvirt already configured", advance_state=True)

        ctx.packages.ensure_installed(KVM_PACKAGES)

        user = os.environ.get("SUDO_USER") or os.environ.get("USER")
        if user and user != "root":
            ctx.executor.run(["usermod", "-aG", "libvirt", user])

        for unit in ("libvirtd", "virtlogd"):
            ctx.executor.run(["systemctl", "enable", "--now", unit])

        # bridge mode uses br-data/br-span*, NAT mode the virbr0 default network
        if net_mode == "nat":
            ctx.hypervisor.ensure_default_network()
        else:
            ctx.hypervisor.remove_network("default")
