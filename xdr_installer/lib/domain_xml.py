"""Libvirt XML documents built as element trees.

Documents are serialized only at the point they are handed to ``virsh``.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Optional, Sequence, Set

from .pci import PCIAddress


def to_xml(elem: ET.Element) -> str:
    ET.indent(elem)
    return ET.tostring(elem, encoding="unicode") + "\n"


def hostdev_element(address: PCIAddress) -> ET.Element:
    hostdev = ET.Element("hostdev", mode="subsystem", type="pci", managed="yes")
    ET.SubElement(hostdev, "driver", name="vfio")
    source = ET.SubElement(hostdev, "source")
    ET.SubElement(source, "address", address.xml_attrs())
    return hostdev


def hostdev_xml(address: PCIAddress) -> str:
    return to_xml(hostdev_element(address))


def hostdev_addresses(domain_xml: str) -> Set[PCIAddress]:
    """PCI source addresses of all ``<hostdev type='pci'>`` entries in a domain XML."""

    if not domain_xml.strip():
        return set()
    root = ET.fromstring(domain_xml)
    found: Set[PCIAddress] = set()
    for hd in root.iter("hostdev"):
        if hd.get("type") != "pci":
            continue
        addr = hd.find("source/address")
        if addr is None:
            continue
        found.add(
            PCIAddress(
                domain=int(addr.get("domain", "0x0"), 16),
                bus=int(addr.get("bus", "0x0"), 16),
                slot=int(addr.get("slot", "0x0"), 16),
                function=int(addr.get("function", "0x0"), 16),
            )
        )
    return found


@dataclass(frozen=True)
class NetworkInterface:
    kind: str  # bridge|network
    source: str
    model: str = "virtio"


@dataclass(frozen=True)
class DomainSpec:
    name: str
    vcpus: int
    memory_mb: int
    disk_path: str
    cpuset: Sequence[int] = ()
    numa_node: Optional[int] = None
    interfaces: Sequence[NetworkInterface] = field(default_factory=tuple)
    hostdevs: Sequence[PCIAddress] = field(default_factory=tuple)
    uefi_loader: Optional[str] = "/usr/share/OVMF/OVMF_CODE_4M.fd"


def domain_element(spec: DomainSpec) -> ET.Element:
    dom = ET.Element("domain", type="kvm")
    ET.SubElement(dom, "name").text = spec.name
    ET.SubElement(dom, "memory", unit="MiB").text = str(spec.memory_mb)
    ET.SubElement(dom, "currentMemory", unit="MiB").text = str(spec.memory_mb)

    vcpu = ET.SubElement(dom, "vcpu", placement="static")
    vcpu.text = str(spec.vcpus)
    cpuset_text = ",".join(str(c) for c in spec.cpuset)
    if cpuset_text:
        vcpu.set("cpuset", cpuset_text)
        cputune = ET.SubElement(dom, "cputune")
        for i in range(spec.vcpus):
            ET.SubElement(cputune, "vcpupin", vcpu=str(i), cpuset=str(spec.cpuset[i % len(spec.cpuset)]))
        ET.SubElement(cputune, "emulatorpin", cpuset=cpuset_text)

    if spec.numa_node is not None:
        numatune = ET.SubElement(dom, "numatune")
        ET.SubElement(numatune, "memory", mode="strict", nodeset=str(spec.numa_node))

    os_el = ET.SubElement(dom, "os")
    ET.SubElement(os_el, "type", arch="x86_64", machine="q35").text = "hvm"
    if spec.uefi_loader:
        ET.SubElement(os_el, "loader", readonly="yes", type="pflash").text = spec.uefi_loader
    ET.SubElement(os_el, "boot", dev="hd")

    features = ET.SubElement(dom, "features")
    ET.SubElement(features, "acpi")
    ET.SubElement(features, "apic")
    ET.SubElement(dom, "cpu", mode="host-passthrough", check="none")

    devices = ET.SubElement(dom, "devices")
    disk = ET.SubElement(devices, "disk", type="file", device="disk")
    ET.SubElement(disk, "driver", name="qemu", type="qcow2", cache="none", io="native")
    ET.SubElement(disk, "source", file=spec.disk_path)
    ET.SubElement(disk, "target", dev="vda", bus="virtio")

    for nic in spec.interfaces:
        iface = ET.SubElement(devices, "interface", type=nic.kind)
        ET.SubElement(iface, "source", {nic.kind: nic.source})
        ET.SubElement(iface, "model", type=nic.model)

    for addr in spec.hostdevs:
        devices.append(hostdev_element(addr))

    ET.SubElement(devices, "serial", type="pty")
    console = ET.SubElement(devices, "console", type="pty")
    ET.SubElement(console, "target", type="serial", port="0")
    return dom


def domain_xml(spec: DomainSpec) -> str:
    return to_xml(domain_element(spec))


def network_xml_default() -> str:
    net = ET.Element("network")
    ET.SubElement(net, "name").text = "default"
    ET.SubElement(net, "forward", mode="nat")
    ET.SubElement(net, "bridge", name="virbr0", stp="on", delay="0")
    ip = ET.SubElement(net, "ip", address="192.168.122.1", netmask="255.255.255.0")
    dhcp = ET.SubElement(ip, "dhcp")
    ET.SubElement(dhcp, "range", start="192.168.122.2", end="192.168.122.254")
    return to_xml(net)
