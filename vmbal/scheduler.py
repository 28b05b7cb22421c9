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

"""Periodic tick: sample, aggregate, balance.

A tick is run to completion before the next one starts. Stopping is
cooperative; :py:meth:`Scheduler.stop` only takes effect between ticks.
It is safe to call from a signal handler: it sets a flag and writes a byte
to a pipe the idle wait selects on.
"""

import dataclasses
import logging
import os
import select
import time

import vmbal.cpubal.systemstate
import vmbal.exc
import vmbal.membal.systemstate
import vmbal.sampler


@dataclasses.dataclass
class TickReport:
    """What one tick did."""

    tick: int
    #: ``(vcpu_key, src_pcpu, dst_pcpu)``
    migrations: list = dataclasses.field(default_factory=list)
    #: ``(domain_key, before_kib, after_kib)``
    memory_actions: list = dataclasses.field(default_factory=list)
    #: keys of domains which could not be sampled
    skipped: list = dataclasses.field(default_factory=list)
    #: balancing was suppressed by the pause file
    paused: bool = False


class SchedulerState:
    """Everything carried from one tick to the next.

    :param host: management API, see :py:class:`vmbal.vmm.LibvirtHost`
    :param vmbal.config.BalancerConfig config: tunables
    :param int stats_period: balloon statistics period for new domains
    """

    def __init__(self, host, config, stats_period=None):
        #: number of completed ticks
        self.tick = 0
        self.cpu = vmbal.cpubal.systemstate.SystemState(host, config)
        self.mem = vmbal.membal.systemstate.SystemState(
            host, config, stats_period=stats_period)


class Scheduler:
    """Runs ticks every *interval* seconds until stopped.

    :param host: management API, see :py:class:`vmbal.vmm.LibvirtHost`
    :param vmbal.config.BalancerConfig config: tunables
    :param int interval: seconds between tick starts
    :param clock: monotonic time source
    """

    def __init__(self, host, config, interval, clock=time.monotonic):
        self.log = logging.getLogger('vmbal.scheduler')
        self.host = host
        self.config = config
        self.interval = interval
        self.clock = clock
        self.state = SchedulerState(host, config, stats_period=interval)
        self.sampler = vmbal.sampler.UtilizationSampler(host)
        self._stop_requested = False
        self._wakeup_r, self._wakeup_w = os.pipe()
        os.set_blocking(self._wakeup_w, False)

    def is_paused(self):
        return bool(self.config.pause_file) and \
            os.path.exists(self.config.pause_file)

    def do_tick(self):
        '''Run a single tick.

        :rtype: TickReport
        :raises vmbal.exc.HostConnectionError: when the host cannot be
            reached; nothing is applied in that case
        '''
        state = self.state
        report = TickReport(tick=state.tick)
        self.log.debug('do_tick(tick={})'.format(state.tick))

        vms = sorted(self.host.list_active_vms())
        state.cpu.sync_domains(vms)
        state.mem.sync_domains(vms)
        state.cpu.refresh_cpu_count()
        state.mem.refresh_host_mem()

        now = self.clock()
        for vm in vms:
            cpu_ok = self.sampler.sample_vcpus(vm, state.cpu.vcpu_dict, now)
            mem_ok = self.sampler.sample_memory(vm, state.mem.dom_dict[vm.key])
            if not (cpu_ok and mem_ok):
                report.skipped.append(vm.key)

        if self.is_paused():
            self.log.info('{} exists, not balancing'.format(
                self.config.pause_file))
            report.paused = True
        else:
            if self.config.balance_cpu:
                report.migrations = state.cpu.do_balance(state.tick)
            if self.config.balance_memory:
                report.memory_actions = state.mem.do_balance()

        self.log.debug('tick {} done: {!r}'.format(state.tick, report))
        state.tick += 1
        return report

    def run(self):
        '''Run ticks until :py:meth:`stop` is called.'''
        self.log.info('balancing every {} s'.format(self.interval))
        while not self._stop_requested:
            started = self.clock()
            try:
                self.do_tick()
            except vmbal.exc.HostConnectionError as e:
                self.log.warning('{}, skipping tick'.format(e))
            except Exception:  # pylint: disable=broad-except
                self.log.exception('do_tick() failed')
            elapsed = self.clock() - started
            self._wait(max(0, self.interval - elapsed))
        self.log.info('stopped after {} ticks'.format(self.state.tick))

    def _wait(self, timeout):
        '''Sleep up to *timeout* seconds, or less if stop was requested.'''
        if self._stop_requested:
            return
        readable, _, _ = select.select([self._wakeup_r], [], [], timeout)
        if readable:
            os.read(self._wakeup_r, 4096)

    def stop(self):
        '''Request the loop to end after the in-flight tick.'''
        self._stop_requested = True
        try:
            os.write(self._wakeup_w, b'\0')
        except BlockingIOError:
            # pipe full, a wakeup is already pending
            pass

    def close(self):
        '''Release the wakeup pipe.'''
        os.close(self._wakeup_r)
        os.close(self._wakeup_w)
