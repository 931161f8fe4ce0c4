"""CPU / NUMA / memory / disk partitioning across sensor VMs.

Policy:
- Totals are split by floor division; the remainder stays unallocated.
- With two or more NUMA nodes, VM ``k`` is pinned to node ``k mod nodes`` and
  takes that node's next unused CPU ids, so VMs never share a CPU and stay
  node-local.
- With fewer than two nodes, VM ``k`` gets ``[k*per, (k+1)*per)``.

Cpusets are kept as explicit ordered id lists, which is also how they are
persisted, so later steps never re-derive the topology.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ValidationError

logger = logging.getLogger(__name__)

HOST_RESERVED_VCPUS = 4


@dataclass(frozen=True)
class NumaNode:
    cpu_ids: Tuple[int, ...]


@dataclass(frozen=True)
class HardwareTopology:
    total_vcpus: int
    total_memory_mb: int
    numa_nodes: Tuple[NumaNode, ...] = ()

    @classmethod
    def from_cpu_lists(
        cls, node_cpu_lists: Sequence[Sequence[int]], *, total_memory_mb: int = 0
    ) -> "HardwareTopology":
        nodes = tuple(NumaNode(tuple(ids)) for ids in node_cpu_lists)
        total = sum(len(n.cpu_ids) for n in nodes)
        return cls(total_vcpus=total, total_memory_mb=total_memory_mb, numa_nodes=nodes)


@dataclass(frozen=True)
class ResourceAllocation:
    vcpu_count: int
    cpuset: Tuple[int, ...]
    memory_mb: int
    disk_gb: int
    numa_node: Optional[int] = None

    @property
    def cpuset_text(self) -> str:
        return format_cpu_list(self.cpuset)


@dataclass(frozen=True)
class Discrepancy:
    vm_index: int
    numa_node: int
    requested: int
    assigned: int

    def __str__(self) -> str:
        return (
            f"VM #{self.vm_index + 1}: NUMA node{self.numa_node} has only "
            f"{self.assigned} free CPUs, {self.requested} requested"
        )


@dataclass(frozen=True)
class AllocationPlan:
    allocations: Tuple[ResourceAllocation, ...]
    discrepancies: Tuple[Discrepancy, ...] = field(default_factory=tuple)

    @property
    def per_vm_vcpus(self) -> int:
        return self.allocations[0].vcpu_count if self.allocations else 0


def parse_cpu_list(text: str) -> List[int]:
    """Parse ``"0-3,8,10-11"`` (kernel cpulist syntax, also plain comma lists)."""

    ids: List[int] = []
    for part in (text or "").replace(" ", "").split(","):
        if not part:
            continue
        if "-" in part:
            lo, hi = part.split("-", 1)
            ids.extend(range(int(lo), int(hi) + 1))
        else:
            ids.append(int(part))
    return ids


def format_cpu_list(ids: Iterable[int]) -> str:
    return ",".join(str(i) for i in ids)


def default_total_vcpus(host_vcpus: int) -> int:
    total = host_vcpus - HOST_RESERVED_VCPUS
    return total if total >= 2 else 2


def allocate(
    *,
    total_vcpus: int,
    total_memory_mb: int,
    total_disk_gb: int,
    vm_count: int,
    topology: HardwareTopology,
) -> AllocationPlan:
    if vm_count < 1:
        raise ValidationError(f"VM count must be >= 1, got {vm_count}")
    for name, value in (
        ("total_vcpus", total_vcpus),
        ("total_memory_mb", total_memory_mb),
        ("total_disk_gb", total_disk_gb),
    ):
        if value < 0:
            raise ValidationError(f"{name} must be >= 0, got {value}")

    per_vcpu = total_vcpus // vm_count
    per_mem = total_memory_mb // vm_count
    per_disk = total_disk_gb // vm_count

    allocations: List[ResourceAllocation] = []
    discrepancies: List[Discrepancy] = []

    nodes = topology.numa_nodes
    if len(nodes) >= 2:
        logger.info("NUMA nodes=%d: pinning each VM to a single node", len(nodes))
        cursors = [0] * len(nodes)
        for k in range(vm_count):
            node_idx = k % len(nodes)
            free = nodes[node_idx].cpu_ids[cursors[node_idx]:]
            cpuset = tuple(free[:per_vcpu])
            cursors[node_idx] += len(cpuset)
            if len(cpuset) < per_vcpu:
                d = Discrepancy(vm_index=k, numa_node=node_idx, requested=per_vcpu, assigned=len(cpuset))
                logger.warning("%s", d)
                discrepancies.append(d)
            allocations.append(
                ResourceAllocation(
                    vcpu_count=per_vcpu,
                    cpuset=cpuset,
                    memory_mb=per_mem,
                    disk_gb=per_disk,
                    numa_node=node_idx,
                )
            )
    else:
        logger.info("Single NUMA node or topology unknown: sequential CPU ranges")
        for k in range(vm_count):
            cpuset = tuple(range(k * per_vcpu, (k + 1) * per_vcpu))
            allocations.append(
                ResourceAllocation(vcpu_count=per_vcpu, cpuset=cpuset, memory_mb=per_mem, disk_gb=per_disk)
            )

    for k, a in enumerate(allocations):
        logger.info(
            "VM #%d: vcpus=%d cpuset=%s memory=%dMB disk=%dGB node=%s",
            k + 1,
            a.vcpu_count,
            a.cpuset_text,
            a.memory_mb,
            a.disk_gb,
            a.numa_node,
        )
    return AllocationPlan(allocations=tuple(allocations), discrepancies=tuple(discrepancies))
