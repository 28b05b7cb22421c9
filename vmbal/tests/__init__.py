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

'''
.. warning::
    The test suite does not need a running hypervisor. The management API is
    replaced with :py:class:`FakeHost`, libvirt objects with
    :py:mod:`unittest.mock` objects.
'''

import logging
import unittest

import vmbal
import vmbal.config
import vmbal.exc

KiB = vmbal.config.KiB
MiB = vmbal.config.MiB
NS = 1000 ** 3


class FakeClock:
    # pylint: disable=too-few-public-methods
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeDomain:
    '''Guest as seen by :py:class:`FakeHost`.

    :param list vcpus: ``[cpu_time_ns, running_on_cpu]`` for every vCPU
    :param dict memory: balloon statistics, or None if the guest does not
        report any
    '''
    # pylint: disable=too-few-public-methods

    def __init__(self, name, vcpus=None, memory=None, max_memory=2048 * MiB):
        self.name = name
        self.vcpus = [list(vcpu) for vcpu in (vcpus or [])]
        #: vcpu index -> allowed CPU bitmask; missing means any CPU
        self.pin_masks = {}
        self.memory = memory
        self.max_memory = max_memory
        self.stats_period = None

    def run(self, index, seconds):
        '''Account *seconds* of run time to vCPU *index*'''
        self.vcpus[index][0] += int(seconds * NS)


class FakeHost:
    '''In-memory management API, see :py:class:`vmbal.vmm.LibvirtHost`.

    Failures are injected by adding domain keys to :py:attr:`fail_sample`,
    :py:attr:`fail_pin` or :py:attr:`fail_memset`, or by setting
    :py:attr:`unreachable`.
    '''

    def __init__(self, cpu_count=2, mem_total=8192 * MiB, mem_free=500 * MiB):
        self.cpu_count = cpu_count
        self.mem_total = mem_total
        self.mem_free = mem_free
        #: key -> FakeDomain
        self.domains = {}
        self.unreachable = False
        self.fail_sample = set()
        self.fail_pin = set()
        self.fail_memset = set()
        self.fail_stats_period = set()
        #: ``(key, vcpu_index, cpu)`` of every pin request
        self.pin_calls = []
        #: ``(key, target)`` of every memory request
        self.memset_calls = []

    def add_domain(self, key, name=None, **kwargs):
        domain = FakeDomain(name or key, **kwargs)
        self.domains[key] = domain
        return domain

    def _check_reachable(self):
        if self.unreachable:
            raise vmbal.exc.HostConnectionError('host unreachable')

    def list_active_vms(self):
        self._check_reachable()
        return [vmbal.VMHandle(key, domain.name, domain)
            for key, domain in sorted(self.domains.items())]

    def get_vcpu_counters(self, vm):
        if vm.key in self.fail_sample:
            raise vmbal.exc.SampleUnavailableError(vm)
        return [(index, cpu_time, cpu)
            for index, (cpu_time, cpu) in enumerate(vm.domain.vcpus)]

    def get_vcpu_pin_mask(self, vm, vcpu_index):
        return vm.domain.pin_masks.get(vcpu_index, (1 << self.cpu_count) - 1)

    def set_vcpu_pin(self, vm, vcpu_index, cpu, cpu_count):
        self.pin_calls.append((vm.key, vcpu_index, cpu))
        if vm.key in self.fail_pin:
            raise vmbal.exc.ActionFailedError(vm)
        assert cpu < cpu_count
        vm.domain.pin_masks[vcpu_index] = 1 << cpu
        vm.domain.vcpus[vcpu_index][1] = cpu

    def get_domain_memory_counters(self, vm):
        if vm.key in self.fail_sample or vm.domain.memory is None:
            raise vmbal.exc.SampleUnavailableError(vm)
        counters = {'available': None, 'swap_in': None, 'swap_out': None}
        counters.update(vm.domain.memory)
        return counters

    def get_domain_max_memory(self, vm):
        return vm.domain.max_memory

    def set_domain_memory(self, vm, target):
        self.memset_calls.append((vm.key, target))
        if vm.key in self.fail_memset:
            raise vmbal.exc.ActionFailedError(vm)
        vm.domain.memory['actual'] = target

    def enable_memory_stats(self, vm, period):
        if vm.key in self.fail_stats_period:
            raise vmbal.exc.ActionFailedError(vm)
        vm.domain.stats_period = period

    def get_host_memory_totals(self):
        self._check_reachable()
        return {'total': self.mem_total, 'free': self.mem_free}

    def get_physical_cpu_count(self):
        self._check_reachable()
        return self.cpu_count


class VmbalTestCase(unittest.TestCase):
    '''Base class for vmbal unit tests.
    '''

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.longMessage = True
        self.log = logging.getLogger('{}.{}.{}'.format(
            self.__class__.__module__,
            self.__class__.__name__,
            self._testMethodName))

    def __str__(self):
        return '{}/{}/{}'.format(
            self.__class__.__module__,
            self.__class__.__name__,
            self._testMethodName)

    def make_config(self, **kwargs):
        kwargs.setdefault('pause_file', '')
        return vmbal.config.BalancerConfig(**kwargs)


def load_tests(loader, tests, pattern):  # pylint: disable=unused-argument
    # discard any tests from this module, because it hosts base classes
    tests = unittest.TestSuite()

    for modname in (
            'vmbal.tests.test_utils',
            'vmbal.tests.test_config',
            'vmbal.tests.test_sampler',
            'vmbal.tests.test_loadmodel',
            'vmbal.tests.test_cpubal',
            'vmbal.tests.test_membal',
            'vmbal.tests.test_scheduler',
            'vmbal.tests.test_vmm',
            'vmbal.tests.test_vmbald',
            ):
        tests.addTests(loader.loadTestsFromName(modname))

    return tests
