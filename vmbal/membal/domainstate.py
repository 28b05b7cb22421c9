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


class DomainState:  # pylint: disable=too-few-public-methods
    def __init__(self, key) -> None:
        # Domain identity.
        self.key: str = key
        # Handle of the domain, refreshed every tick.
        self.vm = None
        # Current balloon allocation (KiB).
        self.mem_actual: Optional[int] = None
        # Maximum allocation (KiB).
        self.mem_max: Optional[int] = None
        # Memory left unused by the guest (KiB), as reported by the balloon
        # driver, and the value from the previous sample.
        self.mem_unused: Optional[int] = None
        self.prev_mem_unused: Optional[int] = None
        # Memory usable by the guest (KiB).
        self.mem_available: Optional[int] = None
        # Number of consecutive samples in which unused memory dropped.
        self.falling_samples: int = 0
        # Cumulative swap counters (KiB) and whether they grew since the
        # previous sample.
        self.swap_in: Optional[int] = None
        self.swap_out: Optional[int] = None
        self.swapping: bool = False
        # Number of successful samples so far.
        self.samples: int = 0
        # Last memory target set by the balancer.
        self.last_target: int = 0
        # Sampled successfully in the current tick.
        self.fresh: bool = False

    def __repr__(self) -> str:
        return self.__dict__.__repr__()


class HostMemoryState:  # pylint: disable=too-few-public-methods
    def __init__(self) -> None:
        # Total and free host memory (KiB).
        self.mem_total: int = 0
        self.mem_free: int = 0
        # Free/total ratio observed on the first tick.
        self.baseline_free_ratio: Optional[float] = None

    @property
    def free_ratio(self) -> float:
        if not self.mem_total:
            return 0.0
        return self.mem_free / self.mem_total

    def update(self, mem_total, mem_free) -> None:
        self.mem_total = mem_total
        self.mem_free = mem_free
        if self.baseline_free_ratio is None and mem_total:
            self.baseline_free_ratio = self.free_ratio

    def __repr__(self) -> str:
        return self.__dict__.__repr__()
