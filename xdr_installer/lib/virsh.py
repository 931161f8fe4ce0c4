from __future__ import annotations

import logging
import os
import tempfile
import time
from typing import Callable, Optional, Protocol, Set

from .command import CmdResult, Executor
from .domain_xml import hostdev_addresses, hostdev_xml, network_xml_default
from .pci import PCIAddress

logger = logging.getLogger(__name__)


class Hypervisor(Protocol):
    """The part of the hypervisor control plane device assignment needs."""

    def exists(self, vm: str) -> bool:
        ...

    def hostdev_addresses(self, vm: str) -> Set[PCIAddress]:
        ...

    def attach_hostdev(self, vm: str, address: PCIAddress) -> CmdResult:
        ...


class Virsh:
    """``virsh`` wrapper. Queries always run; mutations go through the executor.

    Device, pinning and NUMA changes use ``--config`` so they persist in the
    domain definition and apply on the next boot.
    """

    def __init__(
        self,
        executor: Executor,
        *,
        sleep: Callable[[float], None] = time.sleep,
        tmp_dir: Optional[str] = None,
    ) -> None:
        self.executor = executor
        self.sleep = sleep
        self.tmp_dir = tmp_dir

    # Queries

    def exists(self, vm: str) -> bool:
        return self.executor.query(["virsh", "dominfo", vm]).ok

    def state(self, vm: str) -> str:
        r = self.executor.query(["virsh", "domstate", vm])
        return r.stdout.strip() if r.ok else "not found"

    def is_running(self, vm: str) -> bool:
        return self.state(vm) == "running"

    def dumpxml(self, vm: str, *, inactive: bool = True) -> str:
        argv = ["virsh", "dumpxml", vm]
        if inactive:
            argv.append("--inactive")
        r = self.executor.query(argv)
        return r.stdout if r.ok else ""

    def hostdev_addresses(self, vm: str) -> Set[PCIAddress]:
        return hostdev_addresses(self.dumpxml(vm))

    def max_vcpus(self, vm: str) -> int:
        r = self.executor.query(["virsh", "vcpucount", vm, "--maximum", "--config"])
        try:
            return int(r.stdout.strip()) if r.ok else 0
        except ValueError:
            return 0

    # Mutations

    def _with_xml_file(self, xml: str, argv_before: list[str], argv_after: list[str], **kw) -> CmdResult:
        if self.executor.simulate:
            logger.debug("[DRY-RUN] XML:\n%s", xml)
            return self.executor.run([*argv_before, "<xml>", *argv_after], **kw)

        fd, path = tempfile.mkstemp(suffix=".xml", dir=self.tmp_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(xml)
            return self.executor.run([*argv_before, path, *argv_after], **kw)
        finally:
            os.unlink(path)

    def define(self, xml: str) -> CmdResult:
        return self._with_xml_file(xml, ["virsh", "define"], [])

    def undefine(self, vm: str) -> CmdResult:
        return self.executor.run(["virsh", "undefine", vm, "--nvram"])

    def start(self, vm: str) -> CmdResult:
        return self.executor.run(["virsh", "start", vm])

    def shutdown(self, vm: str) -> CmdResult:
        return self.executor.run(["virsh", "shutdown", vm], check=False)

    def destroy(self, vm: str) -> CmdResult:
        return self.executor.run(["virsh", "destroy", vm], check=False)

    def shutdown_and_wait(self, vm: str, *, timeout: int = 120, interval: int = 2) -> None:
        """Graceful shutdown; force-stop once ``timeout`` seconds pass."""

        if self.executor.simulate:
            self.shutdown(vm)
            return
        if not self.is_running(vm):
            logger.info("%s is already powered off", vm)
            return

        self.shutdown(vm)
        waited = 0
        while self.is_running(vm):
            if waited >= timeout:
                logger.warning("%s: shutdown timeout after %ss, forcing stop", vm, timeout)
                self.destroy(vm)
                break
            self.sleep(interval)
            waited += interval
        logger.info("%s: shut off", vm)

    def attach_hostdev(self, vm: str, address: PCIAddress) -> CmdResult:
        return self._with_xml_file(
            hostdev_xml(address), ["virsh", "attach-device", vm], ["--config"], check=False
        )

    def detach_hostdev(self, vm: str, address: PCIAddress) -> CmdResult:
        return self._with_xml_file(
            hostdev_xml(address), ["virsh", "detach-device", vm], ["--config"], check=False
        )

    def vcpupin(self, vm: str, vcpu: int, cpuset: str) -> CmdResult:
        return self.executor.run(["virsh", "vcpupin", vm, str(vcpu), cpuset, "--config"], check=False)

    def emulatorpin(self, vm: str, cpuset: str) -> CmdResult:
        return self.executor.run(["virsh", "emulatorpin", vm, cpuset, "--config"], check=False)

    def numatune(self, vm: str, *, mode: str, nodeset: str) -> CmdResult:
        return self.executor.run(
            ["virsh", "numatune", vm, "--mode", mode, "--nodeset", nodeset, "--config"], check=False
        )

    def ensure_default_network(self) -> None:
        r = self.executor.query(["virsh", "net-info", "default"])
        if not r.ok:
            self._with_xml_file(network_xml_default(), ["virsh", "net-define"], [])
        self.executor.run(["virsh", "net-autostart", "default"], check=False)
        self.executor.run(["virsh", "net-start", "default"], check=False)

    def remove_network(self, name: str = "default") -> None:
        if not self.executor.query(["virsh", "net-info", name]).ok:
            logger.info("libvirt network %s is not defined", name)
            return
        self.executor.run(["virsh", "net-destroy", name], check=False)
        self.executor.run(["virsh", "net-undefine", name], check=False)
