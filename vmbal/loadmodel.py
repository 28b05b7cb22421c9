#
# vmbal - vCPU and memory balancer for a single virtualization host
#
# Copyright (C) 2026  The vmbal authors
#
# This library is free software; you can redistribute it and/or
# modify it under the terms of the GNU Lesser General Public
# License as published by the Free Software Foundation; either
# version 2.1 of the License, or (at your option) any later version.
#
# This library is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public
# License along with this library; if not, see <https://www.gnu.org/licenses/>.
#

"""Aggregated views of the host, recomputed every tick.

Both classes here are plain reductions over derived state; they do not talk
to the host.
"""

import math
from typing import Optional


class PCpuLoad:  # pylint: disable=too-few-public-methods
    def __init__(self, pcpu_id) -> None:
        self.id: int = pcpu_id
        # Sum of utilization of vCPUs assigned here (percent).
        self.load: float = 0.0
        self.vcpu_count: int = 0

    def __repr__(self) -> str:
        return "<PCpuLoad id={} load={:.2f} vcpus={}>".format(
            self.id, self.load, self.vcpu_count
        )


class LoadModel:
    """
    Load of every physical CPU ``0 .. cpu_count-1``.

    vCPUs whose assignment is unknown or out of range are not aggregated;
    they are kept in :py:attr:`unassigned`.
    """

    def __init__(self, cpu_count) -> None:
        self.pcpus: list[PCpuLoad] = [PCpuLoad(i) for i in range(cpu_count)]
        self.unassigned: list = []

    @classmethod
    def from_vcpus(cls, vcpus, cpu_count) -> "LoadModel":
        model = cls(cpu_count)
        for vcpu in vcpus:
            if vcpu.pcpu is None or not 0 <= vcpu.pcpu < cpu_count:
                model.unassigned.append(vcpu)
                continue
            pcpu = model.pcpus[vcpu.pcpu]
            pcpu.load += vcpu.utilization or 0.0
            pcpu.vcpu_count += 1
        return model

    @property
    def cpu_count(self) -> int:
        return len(self.pcpus)

    def load(self, pcpu_id) -> float:
        return self.pcpus[pcpu_id].load

    @property
    def total_load(self) -> float:
        return sum(pcpu.load for pcpu in self.pcpus)

    @property
    def mean(self) -> float:
        if not self.pcpus:
            return 0.0
        return self.total_load / len(self.pcpus)

    @property
    def stddev(self) -> float:
        """Population standard deviation of per-CPU load."""
        if not self.pcpus:
            return 0.0
        mean = self.mean
        return math.sqrt(
            sum((pcpu.load - mean) ** 2 for pcpu in self.pcpus)
            / len(self.pcpus)
        )

    def move(self, utilization, src, dst) -> None:
        """Account a vCPU with *utilization* moved from *src* to *dst*."""
        utilization = utilization or 0.0
        self.pcpus[src].load -= utilization
        self.pcpus[src].vcpu_count -= 1
        self.pcpus[dst].load += utilization
        self.pcpus[dst].vcpu_count += 1

    def __repr__(self) -> str:
        return "<LoadModel mean={:.2f} stddev={:.2f} pcpus={!r}>".format(
            self.mean, self.stddev, self.pcpus
        )


class MemoryModel:
    """
    Per-domain and host-wide memory picture of one tick.

    Only domains with at least one sample are taken into account.
    """

    def __init__(self, host, dom_dict) -> None:
        self.mem_total: int = host.mem_total
        self.mem_free: int = host.mem_free
        self.free_ratio: float = host.free_ratio
        self.baseline_free_ratio: Optional[float] = host.baseline_free_ratio
        self.allocated: int = 0
        self.unused: int = 0
        #: domain key -> unused/actual
        self.unused_ratio: dict[str, float] = {}
        for key, dom in dom_dict.items():
            if not dom.samples:
                continue
            self.allocated += dom.mem_actual
            self.unused += dom.mem_unused
            if dom.mem_actual:
                self.unused_ratio[key] = dom.mem_unused / dom.mem_actual

    @property
    def free_ratio_change(self) -> float:
        """Difference of current free ratio against the first tick."""
        if self.baseline_free_ratio is None:
            return 0.0
        return self.free_ratio - self.baseline_free_ratio

    def __repr__(self) -> str:
        return (
            "<MemoryModel total={} free={} ratio={:.3f} baseline={} "
            "allocated={} unused={}>".format(
                self.mem_total,
                self.mem_free,
                self.free_ratio,
                self.baseline_free_ratio,
                self.allocated,
                self.unused,
            )
        )
