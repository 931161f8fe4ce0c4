from __future__ import annotations

import logging

from ..errors import StepNotApplicable
from ..pipeline import StepContext

logger = logging.getLogger(__name__)

HWE_PACKAGES = {
    "20.04": "linux-generic-hwe-20.04",
    "22.04": "linux-generic-hwe-22.04",
    "24.04": "linux-generic-hwe-24.04",
}

BASE_PACKAGES = ["ifupdown", "net-tools"]


def hwe_package(version_id: str) -> str:
    pkg = HWE_PACKAGES.get(version_id)
    if pkg is None:
        logger.warning("Unsupported Ubuntu version %r; using linux-generic", version_id)
        return "linux-generic"
    return pkg


class HweKernelStep:
    step_id = "02_hwe_kernel"
    display_name = "HWE Kernel Installation"

    def run(self, ctx: StepContext) -> None:
        version = ctx.probe.os_release().get("VERSION_ID", "unknown")
        pkg = hwe_package(version)
        logger.info("Ubuntu %s detected, HWE package: %s", version, pkg)

        installed = ctx.packages.is_installed(pkg)
        if installed and ctx.prompter.confirm(
            "STEP 02 - HWE Kernel Already Installed",
            f"{pkg} is already installed.\n\nSkip this step?",
        ):
            raise StepNotApplicable(f"{pkg} already installed", advance_state=True)

        ctx.packages.update()
        ctx.packages.full_upgrade()
        ctx.packages.ensure_installed(BASE_PACKAGES)
        ctx.packages.ensure_installed([pkg])
        logger.info("HWE kernel is applied on the next reboot (after STEP 05)")
