from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from ..errors import ValidationError
from ..lib.storage import VolumePlan, ensure_volume
from ..pipeline import StepContext
from .common import require_config, vm_targets

logger = logging.getLogger(__name__)

DEPLOY_SCRIPT = "virt_deploy_modular_ds.sh"
MIN_IMAGE_BYTES = 1000 * 1024 * 1024


def image_name(version: str) -> str:
    return f"aella-modular-ds-{version}.qcow2"


def release_url(base_url: str, version: str, name: str) -> str:
    return f"{base_url.rstrip('/')}/release/{version}/datasensor/{name}"


def lv_name(vm: str) -> str:
    return "lv_sensor_root" if vm == "mds" else f"lv_sensor_root_{vm}"


def find_local_image(image_dir: Path) -> Optional[Path]:
    """Newest ``*.qcow2`` over 1000MB in ``image_dir``."""

    if not image_dir.is_dir():
        return None
    candidates = [p for p in image_dir.glob("*.qcow2") if p.is_file() and p.stat().st_size > MIN_IMAGE_BYTES]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


class SensorDownloadStep:
    """One LV per sensor VM, mounted under the image dir, plus the sensor image."""

    step_id = "07_sensor_download"
    display_name = "Sensor LV Creation + Image Download"

    def run(self, ctx: StepContext) -> None:
        cfg = ctx.config
        require_config(cfg, "SENSOR_LV_SIZE_GB_PER_VM", "LV_VOLUME_GROUP", hint="run STEP 01 first")
        if not (cfg["ACPS_USERNAME"] and cfg["ACPS_PASSWORD"]):
            raise ValidationError("ACPS_USERNAME / ACPS_PASSWORD are required to download sensor files")
        image_dir = cfg["SENSOR_IMAGE_DIR"]

        names = [DEPLOY_SCRIPT]
        local = find_local_image(Path(ctx.host_path(image_dir)))
        if local is not None:
            logger.info("Using local image %s -> skipping image download", local)
        else:
            names.append(image_name(cfg["SENSOR_VERSION"]))

        for _, vm in vm_targets(cfg):
            plan = VolumePlan(
                volume_group=cfg["LV_VOLUME_GROUP"],
                lv_name=lv_name(vm),
                size_gb=cfg["SENSOR_LV_SIZE_GB_PER_VM"],
                mount_point=f"{image_dir}/{vm}",
            )
            result = ensure_volume(ctx.executor, plan, fstab_path=ctx.host_path("/etc/fstab"))
            logger.info("%s: %s on %s (created=%s)", vm, result.device, result.mount_point, result.created)

        ctx.executor.run(["mkdir", "-p", image_dir])
        self._download(ctx, image_dir, names)

    def _download(self, ctx: StepContext, image_dir: str, names: List[str]) -> None:
        cfg = ctx.config
        password = cfg["ACPS_PASSWORD"]
        for name in names:
            url = release_url(cfg["ACPS_BASE_URL"], cfg["SENSOR_VERSION"], name)
            ctx.executor.run(
                [
                    "wget",
                    "--progress=dot:giga",
                    f"--user={cfg['ACPS_USERNAME']}",
                    f"--password={password}",
                    "-O",
                    f"{image_dir}/{name}",
                    url,
                ],
                redact=[password],
            )
