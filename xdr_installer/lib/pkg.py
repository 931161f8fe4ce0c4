from __future__ import annotations

import logging
from typing import List, Sequence

from .command import Executor

logger = logging.getLogger(__name__)


class PackageManager:
    """apt/dpkg on the host. Installing an already-installed package is a no-op."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def is_installed(self, package: str) -> bool:
        r = self.executor.query(["dpkg-query", "-W", "-f=${Status}", package])
        return r.ok and "install ok installed" in r.stdout

    def update(self) -> None:
        self.executor.run(["apt-get", "update"])

    def full_upgrade(self) -> None:
        self.executor.run(["apt-get", "full-upgrade", "-y"])

    def ensure_installed(self, packages: Sequence[str], *, with_recommends: bool = True) -> List[str]:
        """Install whatever in ``packages`` is missing; return what was (or would be) installed."""

        missing = [p for p in packages if not self.is_installed(p)]
        if not missing:
            logger.info("Packages already installed: %s", " ".join(packages))
            return []

        argv = ["apt-get", "install", "-y"]
        if not with_recommends:
            argv.append("--no-install-recommends")
        self.executor.run([*argv, *missing])
        return missing
