from __future__ import annotations

import pytest

from xdr_installer.devices import DeviceAssignmentManager, parse_addresses, split_positional
from xdr_installer.errors import PartialFailure, PCIAddressError
from xdr_installer.lib.pci import PCIAddress

from .conftest import FakeHypervisor


def test_pci_address_forms():
    full = PCIAddress.parse("0000:8b:11.0")
    assert full == PCIAddress(0, 0x8B, 0x11, 0)
    assert PCIAddress.parse("8b:11.0") == full
    assert str(full) == "0000:8b:11.0"
    assert full.xml_attrs() == {"domain": "0x0000", "bus": "0x8b", "slot": "0x11", "function": "0x0"}


@pytest.mark.parametrize("text", ["zz:11.0", "0000:8b:11", "8b:11.9", ""])
def test_pci_address_rejects_malformed(text):
    with pytest.raises(PCIAddressError):
        PCIAddress.parse(text)


def test_parse_addresses_keeps_going_after_bad_entry():
    ok, bad = parse_addresses(["zz:11.0", "8b:11.1"])
    assert ok == [PCIAddress(0, 0x8B, 0x11, 1)]
    assert bad == ["zz:11.0"]


def test_split_positional():
    assert split_positional(["a", "b", "c"], 2) == [["a", "c"], ["b"]]
    assert split_positional(["a"], 2) == [["a"], []]
    assert split_positional(["a", "b"], 0) == []


def test_assign_attaches_missing_and_skips_present():
    hv = FakeHypervisor()
    hv.devices["mds"].add(PCIAddress.parse("0000:8b:00.0"))
    manager = DeviceAssignmentManager(hv)

    report = manager.assign({"mds": ["0000:8b:00.0", "8b:00.1"], "mds2": []})

    assert report.ok
    assert [str(a) for _, a in report.attached] == ["0000:8b:00.1"]
    assert [str(a) for _, a in report.already_present] == ["0000:8b:00.0"]
    assert manager.attached_counts(["mds", "mds2"]) == {"mds": 2, "mds2": 0}


def test_assign_twice_is_idempotent():
    hv = FakeHypervisor()
    manager = DeviceAssignmentManager(hv)
    wanted = {"mds": ["0000:8b:00.0"], "mds2": ["0000:8b:00.1"]}

    manager.assign(wanted)
    second = manager.assign(wanted)

    assert second.attached == []
    assert len(second.already_present) == 2
    assert len(hv.attach_calls) == 2


def test_assign_is_best_effort():
    hv = FakeHypervisor(fail=["0000:8b:00.0"])
    manager = DeviceAssignmentManager(hv)

    report = manager.assign({"mds": ["zz:11.0", "0000:8b:00.0", "0000:8b:00.1"], "ghost": ["0000:03:00.0"]})

    assert report.invalid == [("mds", "zz:11.0")]
    assert [str(a) for _, a, _ in report.failed] == ["0000:8b:00.0"]
    assert [str(a) for _, a in report.attached] == ["0000:8b:00.1"]
    assert report.missing_vms == ["ghost"]
    with pytest.raises(PartialFailure) as exc:
        report.raise_for_failures()
    assert exc.value.failed_items == ["mds:0000:8b:00.0"]
