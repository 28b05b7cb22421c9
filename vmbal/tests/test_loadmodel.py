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

import math

from vmbal.cpubal.vcpustate import VCpuState
from vmbal.loadmodel import LoadModel, MemoryModel
from vmbal.membal.domainstate import DomainState, HostMemoryState

import vmbal.tests
from vmbal.tests import MiB


def construct_vcpu(vm_key, index, pcpu, utilization):
    vcpu = VCpuState(vm_key, index)
    vcpu.pcpu = pcpu
    vcpu.utilization = utilization
    return vcpu


class TC_00_LoadModel(vmbal.tests.VmbalTestCase):
    def test_000_aggregation(self):
        vcpus = [
            construct_vcpu('a', 0, 0, 30.0),
            construct_vcpu('a', 1, 0, 60.0),
            construct_vcpu('b', 0, 1, 10.0),
            construct_vcpu('b', 1, 3, 5.0),
        ]
        model = LoadModel.from_vcpus(vcpus, 4)
        self.assertEqual([pcpu.load for pcpu in model.pcpus],
            [90.0, 10.0, 0.0, 5.0])
        self.assertEqual([pcpu.vcpu_count for pcpu in model.pcpus],
            [2, 1, 0, 1])
        self.assertEqual(model.total_load,
            sum(vcpu.utilization for vcpu in vcpus))
        self.assertEqual(model.unassigned, [])

    def test_001_stats_include_idle_cpus(self):
        model = LoadModel.from_vcpus([construct_vcpu('a', 0, 0, 40.0)], 4)
        self.assertEqual(model.mean, 10.0)
        self.assertAlmostEqual(model.stddev, math.sqrt(300))

    def test_002_boundary_scenario(self):
        model = LoadModel.from_vcpus([
            construct_vcpu('a', 0, 0, 30.0),
            construct_vcpu('a', 1, 0, 60.0),
            construct_vcpu('b', 0, 1, 10.0),
        ], 2)
        self.assertEqual(model.mean, 50.0)
        self.assertEqual(model.stddev, 40.0)

    def test_010_unassigned(self):
        vcpus = [
            construct_vcpu('a', 0, None, 50.0),
            construct_vcpu('a', 1, 7, 50.0),
            construct_vcpu('a', 2, -1, 50.0),
            construct_vcpu('b', 0, 1, 20.0),
        ]
        model = LoadModel.from_vcpus(vcpus, 2)
        self.assertEqual(model.total_load, 20.0)
        self.assertEqual(model.unassigned, vcpus[:3])
        self.assertEqual(model.cpu_count, 2)

    def test_011_no_signal(self):
        model = LoadModel.from_vcpus([
            construct_vcpu('a', 0, 0, None),
            construct_vcpu('a', 1, 1, 20.0),
        ], 2)
        self.assertEqual(model.load(0), 0.0)
        self.assertEqual(model.pcpus[0].vcpu_count, 1)

    def test_012_no_cpus(self):
        model = LoadModel.from_vcpus([construct_vcpu('a', 0, 0, 5.0)], 0)
        self.assertEqual(model.mean, 0.0)
        self.assertEqual(model.stddev, 0.0)
        self.assertEqual(len(model.unassigned), 1)

    def test_020_move(self):
        model = LoadModel.from_vcpus([
            construct_vcpu('a', 0, 0, 30.0),
            construct_vcpu('a', 1, 0, 60.0),
        ], 2)
        model.move(30.0, 0, 1)
        self.assertEqual(model.load(0), 60.0)
        self.assertEqual(model.load(1), 30.0)
        self.assertEqual(model.pcpus[1].vcpu_count, 1)
        self.assertEqual(model.total_load, 90.0)


class TC_10_MemoryModel(vmbal.tests.VmbalTestCase):
    def construct_dom(self, key, actual, unused, samples=1):
        dom = DomainState(key)
        dom.mem_actual = actual
        dom.mem_unused = unused
        dom.samples = samples
        return dom

    def test_000_totals(self):
        host = HostMemoryState()
        host.update(4000 * MiB, 1000 * MiB)
        host.update(4000 * MiB, 500 * MiB)
        doms = {
            'a': self.construct_dom('a', 1024 * MiB, 256 * MiB),
            'b': self.construct_dom('b', 512 * MiB, 128 * MiB),
            'c': self.construct_dom('c', None, None, samples=0),
        }
        model = MemoryModel(host, doms)
        self.assertEqual(model.allocated, 1536 * MiB)
        self.assertEqual(model.unused, 384 * MiB)
        self.assertEqual(model.unused_ratio, {'a': 0.25, 'b': 0.25})
        self.assertEqual(model.baseline_free_ratio, 0.25)
        self.assertEqual(model.free_ratio, 0.125)
        self.assertEqual(model.free_ratio_change, -0.125)

    def test_001_no_baseline(self):
        model = MemoryModel(HostMemoryState(), {})
        self.assertEqual(model.free_ratio, 0.0)
        self.assertIsNone(model.baseline_free_ratio)
        self.assertEqual(model.free_ratio_change, 0.0)
