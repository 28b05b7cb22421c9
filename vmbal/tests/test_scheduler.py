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

import os
import tempfile
import time
import unittest.mock

import vmbal.exc
import vmbal.scheduler

import vmbal.tests
from vmbal.tests import MiB


def idle_memory():
    return {'unused': 120 * MiB, 'actual': 512 * MiB}


class TC_00_do_tick(vmbal.tests.VmbalTestCase):
    def setUp(self):
        super().setUp()
        self.host = vmbal.tests.FakeHost(cpu_count=3)
        self.clock = vmbal.tests.FakeClock()
        self.config = self.make_config()

    def make_scheduler(self):
        scheduler = vmbal.scheduler.Scheduler(
            self.host, self.config, 1, clock=self.clock)
        self.addCleanup(scheduler.close)
        return scheduler

    def add_cpu_domains(self):
        dom_a = self.host.add_domain('uuid-a', 'a',
            vcpus=[[0, 0], [0, 0]], memory=idle_memory())
        dom_b = self.host.add_domain('uuid-b', 'b',
            vcpus=[[0, 1]], memory=idle_memory())
        return dom_a, dom_b

    def run_for(self, seconds, dom_a, dom_b):
        self.clock.advance(seconds)
        dom_a.run(0, 0.5 * seconds)
        dom_a.run(1, 0.4 * seconds)
        dom_b.run(0, 0.3 * seconds)

    def test_000_first_tick(self):
        dom_a, dom_b = self.add_cpu_domains()
        dom_a.vcpus[0][0] = 10 ** 12
        scheduler = self.make_scheduler()
        report = scheduler.do_tick()
        self.assertEqual(report.tick, 0)
        self.assertEqual(report.migrations, [])
        self.assertEqual(report.memory_actions, [])
        self.assertEqual(report.skipped, [])
        self.assertEqual(scheduler.state.tick, 1)
        for vcpu in scheduler.state.cpu.vcpus():
            self.assertEqual(vcpu.utilization, 0)
        self.assertEqual(self.host.pin_calls, [])
        self.assertEqual(self.host.memset_calls, [])
        self.assertEqual(dom_a.stats_period, 1)
        self.assertEqual(dom_b.stats_period, 1)

    def test_001_migration_and_cooldown(self):
        dom_a, dom_b = self.add_cpu_domains()
        scheduler = self.make_scheduler()
        scheduler.do_tick()

        self.run_for(1, dom_a, dom_b)
        report = scheduler.do_tick()
        self.assertEqual(report.migrations, [(('uuid-a', 0), 0, 2)])
        self.assertEqual(dom_a.vcpus[0][1], 2)
        self.assertEqual(dom_a.pin_masks, {0: 0b100})

        # pCPU 2 is now the busiest one, but the vCPU has just moved there
        self.run_for(1, dom_a, dom_b)
        report = scheduler.do_tick()
        self.assertEqual(report.migrations, [])
        self.assertEqual(scheduler.state.cpu.vcpu_dict['uuid-a', 0].pcpu, 2)
        self.assertEqual(report.memory_actions, [])

    def test_002_memory_transfer(self):
        donor = self.host.add_domain('uuid-a', 'a',
            memory={'unused': 300 * MiB, 'actual': 1024 * MiB})
        hungry = self.host.add_domain('uuid-b', 'b',
            memory={'unused': 50 * MiB, 'actual': 512 * MiB})
        self.host.mem_free = 500 * MiB
        scheduler = self.make_scheduler()
        self.assertEqual(scheduler.do_tick().memory_actions, [])

        self.clock.advance(1)
        report = scheduler.do_tick()
        self.assertEqual(report.memory_actions, [
            ('uuid-a', 1024 * MiB, 960 * MiB),
            ('uuid-b', 512 * MiB, 576 * MiB),
        ])
        self.assertEqual(donor.memory['actual'], 960 * MiB)
        self.assertEqual(hungry.memory['actual'], 576 * MiB)
        self.assertEqual(scheduler.state.mem.host_mem.mem_free, 436 * MiB)

    def test_010_pause_file(self):
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.config.pause_file = os.path.join(tmpdir.name, 'pause')
        dom_a, dom_b = self.add_cpu_domains()
        scheduler = self.make_scheduler()
        scheduler.do_tick()

        open(self.config.pause_file, 'w').close()
        self.run_for(1, dom_a, dom_b)
        report = scheduler.do_tick()
        self.assertTrue(report.paused)
        self.assertEqual(report.migrations, [])
        self.assertEqual(self.host.pin_calls, [])
        # counters are still sampled
        self.assertEqual(
            scheduler.state.cpu.vcpu_dict['uuid-a', 0].utilization, 50.0)

    def test_011_balancers_disabled(self):
        self.config.balance_cpu = False
        dom_a, dom_b = self.add_cpu_domains()
        scheduler = self.make_scheduler()
        scheduler.do_tick()
        self.run_for(1, dom_a, dom_b)
        self.assertEqual(scheduler.do_tick().migrations, [])
        self.assertEqual(self.host.pin_calls, [])

    def test_020_host_unreachable(self):
        self.add_cpu_domains()
        scheduler = self.make_scheduler()
        self.host.unreachable = True
        with self.assertRaises(vmbal.exc.HostConnectionError):
            scheduler.do_tick()
        self.assertEqual(scheduler.state.tick, 0)

    def test_021_sample_failure(self):
        self.add_cpu_domains()
        self.host.fail_sample.add('uuid-b')
        scheduler = self.make_scheduler()
        with self.assertLogs('vmbal.sampler', 'WARNING'):
            report = scheduler.do_tick()
        self.assertEqual(report.skipped, ['uuid-b'])
        self.assertNotIn(('uuid-b', 0), scheduler.state.cpu.vcpu_dict)
        self.assertEqual(scheduler.state.mem.dom_dict['uuid-b'].samples, 0)

    def test_022_domain_gone(self):
        self.add_cpu_domains()
        scheduler = self.make_scheduler()
        scheduler.do_tick()
        del self.host.domains['uuid-b']
        self.clock.advance(1)
        scheduler.do_tick()
        self.assertEqual(sorted(scheduler.state.cpu.vcpu_dict),
            [('uuid-a', 0), ('uuid-a', 1)])
        self.assertEqual(list(scheduler.state.mem.dom_dict), ['uuid-a'])


class TC_10_run(vmbal.tests.VmbalTestCase):
    def setUp(self):
        super().setUp()
        self.host = vmbal.tests.FakeHost()
        self.clock = vmbal.tests.FakeClock()
        self.scheduler = vmbal.scheduler.Scheduler(
            self.host, self.make_config(), 0, clock=self.clock)
        self.addCleanup(self.scheduler.close)

    def test_000_errors_do_not_stop_loop(self):
        calls = []

        def do_tick():
            calls.append(len(calls))
            if len(calls) == 1:
                raise vmbal.exc.HostConnectionError('host unreachable')
            if len(calls) == 2:
                raise RuntimeError('boom')
            self.scheduler.stop()

        with unittest.mock.patch.object(self.scheduler, 'do_tick', do_tick), \
                self.assertLogs('vmbal.scheduler', 'WARNING') as logs:
            self.scheduler.run()
        self.assertEqual(len(calls), 3)
        self.assertIn('WARNING:vmbal.scheduler:host unreachable, skipping tick',
            logs.output)
        self.assertIn('ERROR:vmbal.scheduler:do_tick() failed', logs.output)

    def test_001_stop_before_run(self):
        self.scheduler.stop()
        with unittest.mock.patch.object(self.scheduler, 'do_tick') as do_tick:
            self.scheduler.run()
        do_tick.assert_not_called()

    def test_002_waits_remaining_interval(self):
        self.scheduler.interval = 5

        def do_tick():
            self.clock.advance(2)

        wait = unittest.mock.Mock(
            side_effect=lambda timeout: self.scheduler.stop())
        with unittest.mock.patch.object(self.scheduler, 'do_tick', do_tick), \
                unittest.mock.patch.object(self.scheduler, '_wait', wait):
            self.scheduler.run()
        wait.assert_called_once_with(3)

    def test_003_tick_longer_than_interval(self):
        self.scheduler.interval = 1

        def do_tick():
            self.clock.advance(2)

        wait = unittest.mock.Mock(
            side_effect=lambda timeout: self.scheduler.stop())
        with unittest.mock.patch.object(self.scheduler, 'do_tick', do_tick), \
                unittest.mock.patch.object(self.scheduler, '_wait', wait):
            self.scheduler.run()
        wait.assert_called_once_with(0)

    def test_004_stop_interrupts_wait(self):
        self.scheduler.stop()
        # a second request while one is pending is harmless
        self.scheduler.stop()
        started = time.monotonic()
        self.scheduler._wait(30)
        self.assertLess(time.monotonic() - started, 5)

    def test_005_wakeup_pipe_wakes_select(self):
        os.write(self.scheduler._wakeup_w, b'\0')
        started = time.monotonic()
        self.scheduler._wait(30)
        self.assertLess(time.monotonic() - started, 5)
        # the pending byte was consumed
        started = time.monotonic()
        self.scheduler._wait(0.05)
        self.assertGreaterEqual(time.monotonic() - started, 0.03)
