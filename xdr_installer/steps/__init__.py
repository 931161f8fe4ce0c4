from ..pipeline import StepRegistry
from .step_01_hw_detect import HardwareDetectStep
from .step_02_hwe_kernel import HweKernelStep
from .step_03_nic_ifupdown import NicIfupdownStep
from .step_04_kvm_libvirt import KvmLibvirtStep
from .step_05_kernel_tuning import KernelTuningStep
from .step_06_libvirt_hooks import LibvirtHooksStep
from .step_07_sensor_download import SensorDownloadStep
from .step_08_sensor_deploy import SensorDeployStep
from .step_09_sensor_passthrough import SensorPassthroughStep
from .step_10_install_dp_cli import InstallDpCliStep


def build_registry() -> StepRegistry:
    return StepRegistry.from_handlers(
        [
            HardwareDetectStep(),
            HweKernelStep(),
            NicIfupdownStep(),
            KvmLibvirtStep(),
            KernelTuningStep(),
            LibvirtHooksStep(),
            SensorDownloadStep(),
            SensorDeployStep(),
            SensorPassthroughStep(),
            InstallDpCliStep(),
        ]
    )


__all__ = [
    "build_registry",
    "HardwareDetectStep",
    "HweKernelStep",
    "NicIfupdownStep",
    "KvmLibvirtStep",
    "KernelTuningStep",
    "LibvirtHooksStep",
    "SensorDownloadStep",
    "SensorDeployStep",
    "SensorPassthroughStep",
    "InstallDpCliStep",
]
