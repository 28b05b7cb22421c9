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

from typing import Optional


class VCpuState:  # pylint: disable=too-few-public-methods
    def __init__(self, vm_key, index) -> None:
        # Identity of the owning domain.
        self.vm_key: str = vm_key
        # Index of the vCPU within the domain.
        self.index: int = index
        # Handle of the owning domain, refreshed every tick.
        self.vm = None
        # Physical CPU the vCPU is assigned to, None when unknown.
        self.pcpu: Optional[int] = None
        # Cumulative run time (ns) at the previous and the latest sample.
        self.prev_cpu_time: Optional[int] = None
        self.cpu_time: Optional[int] = None
        # Monotonic time of the latest sample.
        self.sample_time: Optional[float] = None
        # Percentage of the last interval spent running, None if the
        # counter went backwards and there is no signal for this tick.
        self.utilization: Optional[float] = 0.0
        # Tick in which the vCPU was last migrated.
        self.migrated_tick: Optional[int] = None
        # Sampled successfully in the current tick.
        self.fresh: bool = False

    @property
    def key(self) -> tuple:
        return (self.vm_key, self.index)

    def __repr__(self) -> str:
        return self.__dict__.__repr__()
