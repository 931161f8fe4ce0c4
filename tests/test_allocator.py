from __future__ import annotations

import pytest

from xdr_installer.allocator import (
    HardwareTopology,
    allocate,
    default_total_vcpus,
    format_cpu_list,
    parse_cpu_list,
)
from xdr_installer.errors import ValidationError


def two_node_topology(per_node: int = 24) -> HardwareTopology:
    return HardwareTopology.from_cpu_lists(
        [range(0, per_node), range(per_node, 2 * per_node)], total_memory_mb=64 * 1024
    )


def test_parse_and_format_cpu_lists():
    assert parse_cpu_list("0-3,8,10-11") == [0, 1, 2, 3, 8, 10, 11]
    assert parse_cpu_list("") == []
    assert format_cpu_list([2, 3, 5]) == "2,3,5"


def test_default_total_vcpus_reserves_host_cpus():
    assert default_total_vcpus(48) == 44
    assert default_total_vcpus(4) == 2


def test_two_vms_on_two_numa_nodes_are_node_local_and_disjoint():
    plan = allocate(
        total_vcpus=44, total_memory_mb=40960, total_disk_gb=200, vm_count=2, topology=two_node_topology()
    )

    first, second = plan.allocations
    assert first.cpuset == tuple(range(0, 22))
    assert second.cpuset == tuple(range(24, 46))
    assert (first.numa_node, second.numa_node) == (0, 1)
    assert not set(first.cpuset) & set(second.cpuset)
    assert first.memory_mb == second.memory_mb == 20480
    assert first.disk_gb == second.disk_gb == 100
    assert plan.discrepancies == ()


@pytest.mark.parametrize("vm_count", [1, 2])
def test_shares_never_exceed_totals(vm_count):
    plan = allocate(
        total_vcpus=45, total_memory_mb=10001, total_disk_gb=301, vm_count=vm_count, topology=two_node_topology()
    )
    assert sum(a.vcpu_count for a in plan.allocations) <= 45
    assert sum(a.memory_mb for a in plan.allocations) <= 10001
    assert sum(a.disk_gb for a in plan.allocations) <= 301
    short = {d.vm_index: d for d in plan.discrepancies}
    for k, a in enumerate(plan.allocations):
        if k in short:
            assert (short[k].requested, short[k].assigned) == (a.vcpu_count, len(a.cpuset))
        else:
            assert len(a.cpuset) == a.vcpu_count


def test_single_vm_wider_than_its_node_gets_what_the_node_has():
    plan = allocate(total_vcpus=45, total_memory_mb=0, total_disk_gb=0, vm_count=1, topology=two_node_topology())

    (only,) = plan.allocations
    assert only.vcpu_count == 45
    assert only.cpuset == tuple(range(0, 24))
    assert [(d.vm_index, d.numa_node, d.requested, d.assigned) for d in plan.discrepancies] == [(0, 0, 45, 24)]


def test_more_vms_than_nodes_share_a_node_without_overlap():
    plan = allocate(total_vcpus=30, total_memory_mb=0, total_disk_gb=0, vm_count=3, topology=two_node_topology())

    assert [a.numa_node for a in plan.allocations] == [0, 1, 0]
    assert [a.cpuset for a in plan.allocations] == [tuple(range(0, 10)), tuple(range(24, 34)), tuple(range(10, 20))]
    assert plan.discrepancies == ()


def test_shared_node_running_out_is_reported():
    plan = allocate(total_vcpus=42, total_memory_mb=0, total_disk_gb=0, vm_count=3, topology=two_node_topology())

    first, _, third = plan.allocations
    assert third.cpuset == tuple(range(14, 24))
    assert not set(first.cpuset) & set(third.cpuset)
    assert [(d.vm_index, d.numa_node, d.requested, d.assigned) for d in plan.discrepancies] == [(2, 0, 14, 10)]


def test_single_node_uses_sequential_ranges():
    topo = HardwareTopology.from_cpu_lists([range(0, 16)])
    plan = allocate(total_vcpus=12, total_memory_mb=8192, total_disk_gb=160, vm_count=2, topology=topo)

    assert [a.cpuset for a in plan.allocations] == [tuple(range(0, 6)), tuple(range(6, 12))]
    assert all(a.numa_node is None for a in plan.allocations)


def test_node_too_small_is_reported_not_raised():
    plan = allocate(
        total_vcpus=40, total_memory_mb=0, total_disk_gb=0, vm_count=2, topology=two_node_topology(per_node=8)
    )

    assert [len(a.cpuset) for a in plan.allocations] == [8, 8]
    assert [(d.vm_index, d.numa_node, d.requested, d.assigned) for d in plan.discrepancies] == [
        (0, 0, 20, 8),
        (1, 1, 20, 8),
    ]


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(total_vcpus=4, total_memory_mb=1, total_disk_gb=1, vm_count=0),
        dict(total_vcpus=-1, total_memory_mb=1, total_disk_gb=1, vm_count=1),
        dict(total_vcpus=4, total_memory_mb=-5, total_disk_gb=1, vm_count=1),
    ],
)
def test_invalid_inputs(kwargs):
    with pytest.raises(ValidationError):
        allocate(topology=two_node_topology(), **kwargs)
