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

"""Conversion of monotonic counters into utilization rates.

vCPU run time is read in nanoseconds (libvirt's native unit) and the rate is
computed against the measured time between two samples of the same vCPU::

    utilization = 100 * (cpu_time - prev_cpu_time) / (interval * 1e9)

Memory counters are KiB and are stored as-is, together with the trend of the
guest's unused memory.
"""

import logging
from typing import Optional

import vmbal.exc
from vmbal.cpubal.vcpustate import VCpuState

NSEC_PER_SEC = 1000**3

log = logging.getLogger("vmbal.sampler")


def vcpu_utilization(prev_cpu_time, cpu_time, interval) -> Optional[float]:
    """
    Percentage of *interval* seconds the vCPU spent running.

    Returns 0 when there is no previous sample, and None when the counter
    went backwards (the guest was restarted), meaning no signal is available
    for this interval.
    """
    if prev_cpu_time is None or interval is None or interval <= 0:
        return 0.0
    delta = cpu_time - prev_cpu_time
    if delta < 0:
        return None
    return min(100.0, delta * 100.0 / (interval * NSEC_PER_SEC))


def pinned_cpu(mask) -> Optional[int]:
    """Return the only CPU allowed by *mask*, or None if it allows more."""
    if mask <= 0 or mask & (mask - 1):
        return None
    return mask.bit_length() - 1


def update_domain_memory(dom, counters, mem_max) -> None:
    """Store a new memory sample in *dom*, tracking the unused trend."""
    unused = counters["unused"]
    if dom.mem_unused is not None and unused < dom.mem_unused:
        dom.falling_samples += 1
    else:
        dom.falling_samples = 0
    dom.prev_mem_unused = dom.mem_unused
    dom.mem_unused = unused

    swapping = False
    for attr in ("swap_in", "swap_out"):
        old = getattr(dom, attr)
        new = counters.get(attr)
        if old is not None and new is not None and new > old:
            swapping = True
        setattr(dom, attr, new)
    dom.swapping = swapping

    dom.mem_actual = counters["actual"]
    dom.mem_available = counters.get("available")
    dom.mem_max = mem_max
    dom.samples += 1


class UtilizationSampler:
    """Reads raw counters of one domain at a time.

    A failure to read a domain is logged and the domain is skipped; its
    derived state is kept as it was after the last successful sample.

    :param host: management API, see :py:class:`vmbal.vmm.LibvirtHost`
    """

    def __init__(self, host) -> None:
        self.host = host
        self.log = log

    def _assigned_cpu(self, vm, index, running_on) -> int:
        try:
            mask = self.host.get_vcpu_pin_mask(vm, index)
        except vmbal.exc.SampleUnavailableError as e:
            self.log.debug("%s, using current CPU %d", e, running_on)
            return running_on
        cpu = pinned_cpu(mask)
        if cpu is None:
            return running_on
        return cpu

    def sample_vcpus(self, vm, vcpu_dict, now) -> bool:
        """
        Refresh utilization of all vCPUs of *vm* in *vcpu_dict*.

        :param vmbal.VMHandle vm: domain to sample
        :param dict vcpu_dict: ``(vm_key, index) -> VCpuState``, updated
            in place
        :param float now: monotonic timestamp of this sample
        :returns: False if the domain could not be sampled
        """
        try:
            counters = self.host.get_vcpu_counters(vm)
        except vmbal.exc.SampleUnavailableError as e:
            self.log.warning("%s, keeping last known state", e)
            return False

        seen = set()
        for index, cpu_time, running_on in counters:
            key = (vm.key, index)
            seen.add(key)
            vcpu = vcpu_dict.get(key)
            if vcpu is None:
                vcpu = VCpuState(vm.key, index)
                vcpu_dict[key] = vcpu
            vcpu.vm = vm
            vcpu.pcpu = self._assigned_cpu(vm, index, running_on)

            interval = None
            if vcpu.sample_time is not None:
                interval = now - vcpu.sample_time
            utilization = vcpu_utilization(vcpu.cpu_time, cpu_time, interval)
            if utilization is None:
                self.log.info(
                    "%s vCPU %d counter went backwards (%d -> %d), "
                    "no signal this tick",
                    vm.name,
                    index,
                    vcpu.cpu_time,
                    cpu_time,
                )
            vcpu.prev_cpu_time = vcpu.cpu_time
            vcpu.cpu_time = cpu_time
            vcpu.sample_time = now
            vcpu.utilization = utilization
            vcpu.fresh = True
            self.log.debug(
                "sample: %s vCPU %d on %s utilization=%s",
                vm.name,
                index,
                vcpu.pcpu,
                utilization,
            )

        # vCPUs unplugged since the previous sample
        for key in [
            key for key in vcpu_dict if key[0] == vm.key and key not in seen
        ]:
            del vcpu_dict[key]
        return True

    def sample_memory(self, vm, dom) -> bool:
        """
        Refresh memory counters of *vm* into *dom*.

        :param vmbal.VMHandle vm: domain to sample
        :param vmbal.membal.domainstate.DomainState dom: its derived state
        :returns: False if the domain could not be sampled
        """
        try:
            counters = self.host.get_domain_memory_counters(vm)
            mem_max = self.host.get_domain_max_memory(vm)
        except vmbal.exc.SampleUnavailableError as e:
            self.log.warning("%s, keeping last known state", e)
            return False

        dom.vm = vm
        update_domain_memory(dom, counters, mem_max)
        dom.fresh = True
        self.log.debug(
            "sample: %s actual=%s max=%s unused=%s available=%s "
            "falling=%d swapping=%s",
            vm.name,
            dom.mem_actual,
            dom.mem_max,
            dom.mem_unused,
            dom.mem_available,
            dom.falling_samples,
            dom.swapping,
        )
        return True
