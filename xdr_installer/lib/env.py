from __future__ import annotations

import os
from dataclasses import dataclass


def _base_dir() -> str:
    # root installs under /opt, a regular user under $HOME
    if hasattr(os, "geteuid") and os.geteuid() == 0:
        return "/opt/xdr-installer"
    return os.path.join(os.path.expanduser("~"), "xdr-installer")


@dataclass(frozen=True)
class Paths:
    base_dir: str

    @property
    def state_dir(self) -> str:
        return os.path.join(self.base_dir, "state")

    @property
    def state_default(self) -> str:
        return os.path.join(self.state_dir, "xdr_install.state")

    @property
    def config_default(self) -> str:
        return os.path.join(self.state_dir, "xdr_install.conf")

    @property
    def log_default(self) -> str:
        return os.path.join(self.state_dir, "xdr_install.log")


PATHS = Paths(base_dir=_base_dir())
