from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..errors import StepNotApplicable, ValidationError
from ..lib import netcfg
from ..pipeline import StepContext
from .common import backup_file, read_host_file, require_config, write_host_file

logger = logging.getLogger(__name__)

NETPLAN_DIR = "/etc/netplan"

NETWORKD_UNITS = ["systemd-networkd", "systemd-networkd-wait-online"]


class NicIfupdownStep:
    """Rename NICs by PCI address and move the host from netplan to ifupdown.

    Takes effect on the next boot, so this step is normally in the reboot set.
    """

    step_id = "03_nic_ifupdown"
    display_name = "NIC Naming / ifupdown Network Configuration"

    def run(self, ctx: StepContext) -> None:
        cfg = ctx.config
        bridge_mode = cfg["SENSOR_NET_MODE"] == "bridge"
        require_config(cfg, "HOST_NIC", *(["DATA_NIC"] if bridge_mode else []), hint="run STEP 01 first")

        if netcfg.is_configured(
            read_host_file(ctx, netcfg.UDEV_RULES_PATH),
            read_host_file(ctx, netcfg.INTERFACES_PATH),
            with_data=bridge_mode,
        ) and ctx.prompter.confirm(
            "STEP 03 - Already Configured",
            "udev rule and /etc/network/interfaces are already configured.\n\nSkip this step?",
        ):
            raise StepNotApplicable("network naming already configured", advance_state=True)

        host = self._ask_host_address(ctx)
        layout = self._layout(ctx, host, bridge_mode)

        backup_file(ctx, netcfg.UDEV_RULES_PATH)
        write_host_file(ctx, netcfg.UDEV_RULES_PATH, netcfg.udev_rules(layout))
        ctx.executor.run(["udevadm", "control", "--reload"])
        ctx.executor.run(["udevadm", "trigger", "--type=devices", "--action=add"], check=False)

        backup_file(ctx, netcfg.INTERFACES_PATH)
        write_host_file(ctx, netcfg.INTERFACES_PATH, netcfg.interfaces_main(host))
        for name, stanza in layout.bridges():
            write_host_file(ctx, f"{netcfg.INTERFACES_DIR}/{name}", stanza.render())

        for line in netcfg.RT_TABLE_LINES:
            ctx.executor.append_line_if_missing(ctx.host_path(netcfg.RT_TABLES_PATH), line)
        write_host_file(ctx, netcfg.ROUTING_HOOK_PATH, netcfg.routing_hook(host), mode=0o755)

        self._disable_netplan(ctx)
        logger.info("Network configuration written; it is applied after the host reboots")

    def _ask_host_address(self, ctx: StepContext) -> netcfg.HostAddress:
        cfg = ctx.config
        cidr = ctx.prompter.ask(
            "STEP 03 - HOST IP", "HOST interface address with prefix, e.g. 10.4.0.210/24", default=cfg["HOST_IP_CIDR"]
        )
        gateway = ctx.prompter.ask("STEP 03 - Gateway", "Default gateway, e.g. 10.4.0.254", default=cfg["HOST_GATEWAY"])
        dns = ctx.prompter.ask("STEP 03 - DNS", "DNS servers (space separated)", default=cfg["HOST_DNS"])
        host = netcfg.HostAddress.parse(cidr, gateway, dns)
        cfg.update({"HOST_IP_CIDR": f"{host.ip}/{host.prefix}", "HOST_GATEWAY": host.gateway, "HOST_DNS": dns})
        return host

    def _layout(self, ctx: StepContext, host: netcfg.HostAddress, bridge_mode: bool) -> netcfg.NetworkLayout:
        cfg = ctx.config
        host_pci = ctx.probe.nic_pci_address(cfg["HOST_NIC"])
        data_pci: Optional[str] = None
        if bridge_mode:
            data_pci = ctx.probe.nic_pci_address(cfg["DATA_NIC"])
        if host_pci is None or (bridge_mode and data_pci is None):
            raise ValidationError(
                f"PCI address for HOST_NIC ({cfg['HOST_NIC']}) or DATA_NIC ({cfg['DATA_NIC']}) could not be found"
            )

        span: List[Tuple[str, str]] = []
        for nic in cfg.words("SPAN_NICS"):
            pci = ctx.probe.nic_pci_address(nic)
            if pci is None:
                logger.warning("SPAN NIC %s: PCI address not found, no udev rule", nic)
                continue
            span.append((nic, pci))

        return netcfg.NetworkLayout(
            host_pci=host_pci,
            data_pci=data_pci,
            host=host,
            span=tuple(span),
            span_bridges=cfg["SPAN_ATTACH_MODE"] == "bridge",
        )

    def _disable_netplan(self, ctx: StepContext) -> None:
        netplan = Path(ctx.host_path(NETPLAN_DIR))
        yamls = sorted(netplan.glob("*.yaml")) if netplan.is_dir() else []
        if yamls:
            disabled = netplan / "disabled"
            ctx.executor.run(["mkdir", "-p", str(disabled)])
            ctx.executor.run(["mv", *[str(p) for p in yamls], str(disabled)])
        else:
            logger.info("No netplan yaml found (may already be disabled)")

        for unit in NETWORKD_UNITS:
            ctx.executor.run(["systemctl", "disable", "--now", unit], check=False)
            ctx.executor.run(["systemctl", "mask", unit], check=False)
        ctx.executor.run(["systemctl", "unmask", "networking"], check=False)
        ctx.executor.run(["systemctl", "enable", "networking"], check=False)
