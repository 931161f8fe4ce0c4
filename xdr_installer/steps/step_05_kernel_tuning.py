from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from ..errors import StepNotApplicable
from ..pipeline import StepContext
from .common import backup_file, read_host_file, write_host_file

logger = logging.getLogger(__name__)

GRUB_DEFAULTS = "/etc/default/grub"
IOMMU_ARGS = "intel_iommu=on iommu=pt"
SYSCTL_DROPIN = "/etc/sysctl.d/99-xdr-sensor.conf"
QEMU_KVM_DEFAULTS = "/etc/default/qemu-kvm"
FSTAB = "/etc/fstab"
SWAP_FILES = ["/swapfile", "/swap.img", "/var/swap", "/swap"]

SYSCTL_PARAMS = """\
# XDR sensor kernel tuning (generated)
net.ipv4.ip_forward = 1
vm.min_free_kbytes = 1048576
"""

_CMDLINE_RE = re.compile(r'^(GRUB_CMDLINE_LINUX=")(.*)(")\s*$', re.M)


def add_iommu_args(grub_text: str) -> str:
    """Prepend the IOMMU flags to GRUB_CMDLINE_LINUX (added if the line is missing)."""

    if IOMMU_ARGS in grub_text:
        return grub_text
    if _CMDLINE_RE.search(grub_text):
        return _CMDLINE_RE.sub(lambda m: f"{m.group(1)}{(IOMMU_ARGS + ' ' + m.group(2)).strip()}{m.group(3)}", grub_text)
    sep = "" if not grub_text or grub_text.endswith("\n") else "\n"
    return f'{grub_text}{sep}GRUB_CMDLINE_LINUX="{IOMMU_ARGS}"\n'


def set_ksm_disabled(text: str) -> str:
    if re.search(r"^KSM_ENABLED=", text, re.M):
        return re.sub(r"^KSM_ENABLED=.*$", "KSM_ENABLED=0", text, flags=re.M)
    sep = "" if not text or text.endswith("\n") else "\n"
    return f"{text}{sep}KSM_ENABLED=0\n"


def comment_swap_entries(fstab_text: str) -> str:
    out: List[str] = []
    for line in fstab_text.splitlines():
        fields = line.split()
        if line.lstrip().startswith("#") or len(fields) < 3:
            out.append(line)
        elif fields[2] == "swap" or fields[0].startswith("/swap"):
            out.append("#" + line)
        else:
            out.append(line)
    return "\n".join(out) + ("\n" if fstab_text.endswith("\n") else "")


class KernelTuningStep:
    """IOMMU kernel flags, sysctl drop-in, KSM off and (optionally) swap off."""

    step_id = "05_kernel_tuning"
    display_name = "Kernel Parameters / KSM / Swap Tuning"

    def run(self, ctx: StepContext) -> None:
        grub = read_host_file(ctx, GRUB_DEFAULTS) or ""
        qemu_kvm = read_host_file(ctx, QEMU_KVM_DEFAULTS) or ""
        grub_ok = IOMMU_ARGS in grub
        ksm_ok = re.search(r"^KSM_ENABLED=0\s*$", qemu_kvm, re.M) is not None

        if grub_ok and ksm_ok and ctx.prompter.confirm(
            "STEP 05 - Already Configured", "GRUB IOMMU and KSM configuration already exist.\n\nSkip this step?"
        ):
            raise StepNotApplicable("kernel tuning already applied", advance_state=True)

        if grub_ok:
            logger.info("GRUB already has %s", IOMMU_ARGS)
        else:
            backup_file(ctx, GRUB_DEFAULTS)
            write_host_file(ctx, GRUB_DEFAULTS, add_iommu_args(grub))
            ctx.executor.run(["update-grub"])

        write_host_file(ctx, SYSCTL_DROPIN, SYSCTL_PARAMS)
        ctx.executor.run(["sysctl", "--system"], check=False)

        if ksm_ok:
            logger.info("KSM is already disabled")
        else:
            backup_file(ctx, QEMU_KVM_DEFAULTS)
            write_host_file(ctx, QEMU_KVM_DEFAULTS, set_ksm_disabled(qemu_kvm))
        ctx.executor.run(["systemctl", "disable", "--now", "ksm", "ksmtuned"], check=False)

        if ctx.prompter.confirm(
            "STEP 05 - swap disable",
            "Disable swap?\n\nAll swap is turned off, swap entries in /etc/fstab are commented out "
            "and swap files are removed.",
        ):
            self._disable_swap(ctx)
        else:
            logger.info("Operator kept swap enabled")

    def _disable_swap(self, ctx: StepContext) -> None:
        ctx.executor.run(["swapoff", "-a"])

        fstab = read_host_file(ctx, FSTAB)
        if fstab is not None:
            updated = comment_swap_entries(fstab)
            if updated != fstab:
                backup_file(ctx, FSTAB)
                write_host_file(ctx, FSTAB, updated)

        for swap_file in SWAP_FILES:
            if Path(ctx.host_path(swap_file)).is_file():
                ctx.executor.run(["rm", "-f", ctx.host_path(swap_file)])

        r = ctx.executor.query(["systemctl", "list-units", "--type=swap", "--all", "--no-legend", "--plain"])
        for line in r.stdout.splitlines() if r.ok else []:
            unit = line.split()[0] if line.split() else ""
            if unit.endswith(".swap"):
                ctx.executor.run(["systemctl", "mask", unit], check=False)
