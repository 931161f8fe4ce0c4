from __future__ import annotations

import logging
from typing import Sequence

from ..pipeline import StepContext
from .common import backup_file, vm_targets, write_host_file

logger = logging.getLogger(__name__)

HOOKS_DIR = "/etc/libvirt/hooks"
LKG_PID_SCRIPT = "/usr/bin/last_known_good_pid"
CHECK_VM_STATE_SCRIPT = "/usr/bin/check_vm_state"
CRON_FILE = "/etc/cron.d/xdr-check-vm-state"

NETWORK_HOOK = """\
#!/bin/bash
# Network hook - L2 bridge mode only (no IP routing)
"""

LKG_PID = """\
#!/bin/bash
VM_NAME=$1
RUN_DIR=/var/run/libvirt/qemu
RETRY=60

for i in $(seq 1 $RETRY); do
    if [ -e ${RUN_DIR}/${VM_NAME}.pid ]; then
        cp ${RUN_DIR}/${VM_NAME}.pid ${RUN_DIR}/${VM_NAME}.lkg
        exit 0
    fi
    sleep 5
done

exit 1
"""


def qemu_hook(vms: Sequence[str]) -> str:
    """Record the last known good qemu pid of each sensor VM on start."""

    pattern = "|".join(vms)
    return "\n".join(
        [
            "#!/bin/bash",
            "# XDR sensor qemu hook (generated)",
            'case "${1}" in',
            f"  {pattern})",
            '    if [ "${2}" = "start" ] || [ "${2}" = "reconnect" ]; then',
            f"      {LKG_PID_SCRIPT} ${{1}} > /dev/null 2>&1 &",
            "    fi",
            "    ;;",
            "esac",
            "",
        ]
    )


def check_vm_state(vms: Sequence[str]) -> str:
    """Restart a sensor VM that the OOM killer took down."""

    return "\n".join(
        [
            "#!/bin/bash",
            f"VM_LIST=({' '.join(vms)})",
            "RUN_DIR=/var/run/libvirt/qemu",
            "",
            'for VM in "${VM_LIST[@]}"; do',
            "    if [ ! -e ${RUN_DIR}/${VM}.xml -a ! -e ${RUN_DIR}/${VM}.pid ]; then",
            "        if [ -e ${RUN_DIR}/${VM}.lkg ]; then",
            "            LKG_PID=$(cat ${RUN_DIR}/${VM}.lkg)",
            '            if dmesg | grep "Out of memory: Kill process $LKG_PID" > /dev/null 2>&1; then',
            "                virsh start $VM",
            "            fi",
            "        fi",
            "    fi",
            "done",
            "",
            "exit 0",
            "",
        ]
    )


def cron_entry() -> str:
    return f"SHELL=/bin/bash\n*/5 * * * * root {CHECK_VM_STATE_SCRIPT} > /dev/null 2>&1\n"


class LibvirtHooksStep:
    step_id = "06_libvirt_hooks"
    display_name = "libvirt Hooks Installation"

    def run(self, ctx: StepContext) -> None:
        vms = [vm for _, vm in vm_targets(ctx.config)]

        ctx.executor.run(["mkdir", "-p", ctx.host_path(HOOKS_DIR)])
        for name, content in (("network", NETWORK_HOOK), ("qemu", qemu_hook(vms))):
            path = f"{HOOKS_DIR}/{name}"
            backup_file(ctx, path)
            write_host_file(ctx, path, content, mode=0o755)

        write_host_file(ctx, LKG_PID_SCRIPT, LKG_PID, mode=0o755)
        write_host_file(ctx, CHECK_VM_STATE_SCRIPT, check_vm_state(vms), mode=0o755)
        write_host_file(ctx, CRON_FILE, cron_entry(), mode=0o644)

        ctx.executor.run(["systemctl", "restart", "libvirtd"])
        logger.info("libvirt hooks installed for %s", ", ".join(vms))
