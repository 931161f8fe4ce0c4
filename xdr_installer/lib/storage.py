from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import ValidationError
from .command import Executor

logger = logging.getLogger(__name__)

FSTAB_PATH = "/etc/fstab"


@dataclass(frozen=True)
class VolumePlan:
    volume_group: str
    lv_name: str
    size_gb: int
    mount_point: str
    fs_type: str = "ext4"
    owner: Optional[str] = "stellar:stellar"

    @property
    def device(self) -> str:
        return f"/dev/{self.volume_group}/{self.lv_name}"

    @property
    def fstab_line(self) -> str:
        return f"{self.device} {self.mount_point} {self.fs_type} defaults,noatime 0 2"


@dataclass(frozen=True)
class VolumeResult:
    device: str
    mount_point: str
    created: bool
    mounted: bool
    fstab_added: bool


def lv_exists(executor: Executor, plan: VolumePlan) -> bool:
    return executor.query(["lvs", plan.device]).ok


def mounted_source(executor: Executor, mount_point: str) -> Optional[str]:
    r = executor.query(["findmnt", "-n", "-o", "SOURCE", mount_point])
    src = r.stdout.strip()
    return src if r.ok and src else None


def _same_device(executor: Executor, a: str, b: str) -> bool:
    if a == b:
        return True
    # findmnt reports /dev/mapper/vg-lv for /dev/vg/lv
    ra = executor.query(["readlink", "-f", a])
    rb = executor.query(["readlink", "-f", b])
    return ra.ok and rb.ok and ra.stdout.strip() == rb.stdout.strip()


def ensure_volume(executor: Executor, plan: VolumePlan, *, fstab_path: str = FSTAB_PATH) -> VolumeResult:
    """Create, format and mount a logical volume; register it in fstab.

    Each part is skipped when already in place. A mount point held by some
    other device is an error, never overmounted.
    """

    if plan.size_gb <= 0:
        raise ValidationError(f"{plan.lv_name}: LV size must be > 0 GB")

    created = False
    if lv_exists(executor, plan):
        logger.info("%s already exists -> skipping lvcreate/mkfs", plan.device)
    else:
        logger.info("Creating %s (%dG)", plan.device, plan.size_gb)
        executor.run(["lvcreate", "-y", "-L", f"{plan.size_gb}G", "-n", plan.lv_name, plan.volume_group])
        executor.run([f"mkfs.{plan.fs_type}", "-F", plan.device])
        created = True

    executor.run(["mkdir", "-p", plan.mount_point])

    src = mounted_source(executor, plan.mount_point)
    mounted = False
    if src is None:
        executor.run(["mount", plan.device, plan.mount_point])
        mounted = True
    elif not _same_device(executor, src, plan.device):
        raise ValidationError(f"{plan.mount_point} is already mounted by {src}, expected {plan.device}")
    else:
        logger.info("%s is already mounted", plan.mount_point)

    fstab_added = executor.append_line_if_missing(
        fstab_path, plan.fstab_line, marker=f" {plan.mount_point} "
    )
    if fstab_added:
        executor.run(["systemctl", "daemon-reload"], check=False)

    if plan.owner:
        executor.run(["chown", "-R", plan.owner, plan.mount_point], check=False)

    return VolumeResult(
        device=plan.device, mount_point=plan.mount_point, created=created, mounted=mounted, fstab_added=fstab_added
    )
