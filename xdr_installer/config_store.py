from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml

from .errors import ConfigKeyError
from .state_store import load_document, save_document

logger = logging.getLogger(__name__)

VM_NAMES: Tuple[str, ...] = ("mds", "mds2")


@dataclass(frozen=True)
class ConfigKey:
    name: str
    type: type
    default: Any
    help: str = ""
    minimum: Optional[int] = None
    maximum: Optional[int] = None


def _key(name: str, typ: type, default: Any, help: str = "", **bounds: int) -> ConfigKey:
    return ConfigKey(name=name, type=typ, default=default, help=help, **bounds)


CONFIG_KEYS: Tuple[ConfigKey, ...] = (
    _key("DRY_RUN", bool, True, "1=simulate, 0=execute"),
    _key("SENSOR_VERSION", str, "6.2.0"),
    _key("ACPS_USERNAME", str, ""),
    _key("ACPS_PASSWORD", str, ""),
    _key("ACPS_BASE_URL", str, "https://acps.stellarcyber.ai"),
    _key("ENABLE_AUTO_REBOOT", bool, True),
    _key("AUTO_REBOOT_AFTER_STEP_ID", str, "03_nic_ifupdown 05_kernel_tuning", "space separated step ids"),
    # NIC selection (step 01)
    _key("HOST_NIC", str, ""),
    _key("DATA_NIC", str, ""),
    _key("SPAN_NICS", str, ""),
    _key("HOST_IP_CIDR", str, "", "e.g. 10.4.0.210/24"),
    _key("HOST_GATEWAY", str, ""),
    _key("HOST_DNS", str, "8.8.8.8"),
    # totals and per-VM shares (step 01)
    _key("SENSOR_VM_COUNT", int, 2, "1 or 2", minimum=1, maximum=len(VM_NAMES)),
    _key("SENSOR_TOTAL_VCPUS", int, 0),
    _key("SENSOR_VCPUS_PER_VM", int, 0),
    _key("SENSOR_TOTAL_MEMORY_MB", int, 0),
    _key("SENSOR_MEMORY_MB_PER_VM", int, 0),
    _key("SENSOR_TOTAL_LV_SIZE_GB", int, 0),
    _key("SENSOR_LV_SIZE_GB_PER_VM", int, 0),
    _key("SENSOR_CPUSET_MDS1", str, "", "explicit comma separated CPU ids"),
    _key("SENSOR_CPUSET_MDS2", str, "", "explicit comma separated CPU ids"),
    _key("SENSOR_NUMA_NODE_MDS1", str, ""),
    _key("SENSOR_NUMA_NODE_MDS2", str, ""),
    _key("SPAN_NICS_MDS1", str, ""),
    _key("SPAN_NICS_MDS2", str, ""),
    _key("SENSOR_SPAN_PCIS_MDS1", str, ""),
    _key("SENSOR_SPAN_PCIS_MDS2", str, ""),
    _key("SPAN_ATTACH_MODE", str, "pci", "pci|bridge"),
    _key("SENSOR_NET_MODE", str, "bridge", "bridge|nat"),
    _key("LV_VOLUME_GROUP", str, "ubuntu-vg"),
    _key("SENSOR_IMAGE_DIR", str, "/var/lib/libvirt/images"),
)

KEYS_BY_NAME: Dict[str, ConfigKey] = {k.name: k for k in CONFIG_KEYS}

_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n", ""}


def coerce(key: ConfigKey, value: Any) -> Any:
    if value is None:
        return key.default

    if key.type is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"{key.name}: not a boolean: {value!r}")

    if key.type is int:
        if isinstance(value, bool):
            raise ValueError(f"{key.name}: not an integer: {value!r}")
        if isinstance(value, int):
            number = value
        else:
            text = str(value).strip()
            if text == "":
                return key.default
            number = int(text)
        if key.minimum is not None and number < key.minimum:
            raise ValueError(f"{key.name}: must be >= {key.minimum}, got {number}")
        if key.maximum is not None and number > key.maximum:
            raise ValueError(f"{key.name}: must be <= {key.maximum}, got {number}")
        return number

    return str(value)


class Configuration:
    """Declared key/value settings, persisted on every mutation.

    Notes:
    - Keys missing from the file fall back to their declared default.
    - Unknown keys in the file are ignored.
    - ``set``/``update`` rewrite the whole file immediately; memory only
      changes once that write succeeded.
    """

    def __init__(self, path: str, values: Optional[Dict[str, Any]] = None) -> None:
        self.path = path
        self._values: Dict[str, Any] = {k.name: k.default for k in CONFIG_KEYS}
        if values:
            self._values.update(values)

    @classmethod
    def load(cls, path: str) -> "Configuration":
        try:
            raw = load_document(path)
        except (ValueError, yaml.YAMLError) as e:
            logger.warning("Config file %s is unreadable (%s); using defaults", path, e)
            raw = {}

        values: Dict[str, Any] = {}
        for name, raw_value in raw.items():
            key = KEYS_BY_NAME.get(name)
            if key is None:
                logger.debug("Ignoring unknown config key %s", name)
                continue
            try:
                values[name] = coerce(key, raw_value)
            except ValueError:
                logger.warning("Config %s=%r is invalid; using default %r", name, raw_value, key.default)
        return cls(path, values)

    def __getitem__(self, name: str) -> Any:
        if name not in KEYS_BY_NAME:
            raise ConfigKeyError(name)
        return self._values[name]

    def get(self, name: str, default: Any = None) -> Any:
        if name not in KEYS_BY_NAME:
            return default
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(k.name for k in CONFIG_KEYS)

    def as_dict(self) -> Dict[str, Any]:
        return {k.name: self._values[k.name] for k in CONFIG_KEYS}

    def set(self, name: str, value: Any) -> None:
        self.update({name: value})

    def update(self, values: Mapping[str, Any]) -> None:
        coerced = {}
        for name, value in values.items():
            key = KEYS_BY_NAME.get(name)
            if key is None:
                raise ConfigKeyError(name)
            coerced[name] = coerce(key, value)
        staged = {**self._values, **coerced}
        self._write(staged)
        self._values = staged
        for name in coerced:
            shown = "(configured)" if name == "ACPS_PASSWORD" else coerced[name]
            logger.info("Config %s=%s", name, shown)

    def persist(self) -> None:
        self._write(self._values)

    def _write(self, values: Mapping[str, Any]) -> None:
        ordered = {k.name: values[k.name] for k in CONFIG_KEYS}
        save_document(self.path, ordered, header="xdr-installer environment configuration (auto-generated)")

    # Derived accessors

    @property
    def dry_run(self) -> bool:
        return bool(self._values["DRY_RUN"])

    @property
    def auto_reboot_enabled(self) -> bool:
        return bool(self._values["ENABLE_AUTO_REBOOT"])

    @property
    def reboot_step_ids(self) -> List[str]:
        return str(self._values["AUTO_REBOOT_AFTER_STEP_ID"]).split()

    @property
    def vm_names(self) -> Tuple[str, ...]:
        return VM_NAMES

    @staticmethod
    def vm_key(prefix: str, index: int) -> str:
        """``vm_key("SENSOR_CPUSET", 0)`` -> ``SENSOR_CPUSET_MDS1``."""
        return f"{prefix}_MDS{index + 1}"

    def words(self, name: str) -> List[str]:
        return str(self[name] or "").split()
