from __future__ import annotations

import xml.etree.ElementTree as ET

from xdr_installer.lib.domain_xml import (
    DomainSpec,
    NetworkInterface,
    domain_xml,
    hostdev_addresses,
    hostdev_xml,
    network_xml_default,
)
from xdr_installer.lib.pci import PCIAddress


def test_hostdev_xml_round_trips_through_domain_parser():
    addr = PCIAddress.parse("0000:8b:11.0")
    hostdev = hostdev_xml(addr)
    assert "bus=\"0x8b\"" in hostdev
    assert hostdev_addresses(f"<domain><devices>{hostdev}</devices></domain>") == {addr}


def test_hostdev_addresses_ignores_non_pci_and_empty():
    xml = "<domain><devices><hostdev type='usb'><source><vendor id='0x1'/></source></hostdev></devices></domain>"
    assert hostdev_addresses(xml) == set()
    assert hostdev_addresses("") == set()


def test_domain_pins_every_vcpu_inside_cpuset():
    spec = DomainSpec(
        name="mds2",
        vcpus=4,
        memory_mb=8192,
        disk_path="/img/mds2/mds2.qcow2",
        cpuset=(24, 25, 26, 27),
        numa_node=1,
        interfaces=(NetworkInterface("bridge", "br-data"),),
        hostdevs=(PCIAddress.parse("8b:00.1"),),
    )
    root = ET.fromstring(domain_xml(spec))

    assert root.findtext("name") == "mds2"
    assert root.find("vcpu").get("cpuset") == "24,25,26,27"
    assert [p.get("cpuset") for p in root.iter("vcpupin")] == ["24", "25", "26", "27"]
    assert root.find("numatune/memory").get("nodeset") == "1"
    assert root.find("devices/interface/source").get("bridge") == "br-data"
    assert root.find("devices/disk/source").get("file") == "/img/mds2/mds2.qcow2"
    assert len(list(root.iter("hostdev"))) == 1


def test_domain_without_cpuset_has_no_cputune():
    root = ET.fromstring(domain_xml(DomainSpec(name="mds", vcpus=2, memory_mb=1024, disk_path="/d.qcow2")))
    assert root.find("cputune") is None
    assert root.find("numatune") is None


def test_default_network_is_nat():
    root = ET.fromstring(network_xml_default())
    assert root.find("forward").get("mode") == "nat"
    assert root.find("bridge").get("name") == "virbr0"
