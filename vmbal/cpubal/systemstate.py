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

import logging

import vmbal.cpubal.algo
import vmbal.exc
import vmbal.log
from vmbal.cpubal.vcpustate import VCpuState
from vmbal.loadmodel import LoadModel


class SystemState:
    """
    Owns derived state of all vCPUs on the host and applies repinning.

    :param host: management API, see :py:class:`vmbal.vmm.LibvirtHost`
    :param vmbal.config.BalancerConfig config: tunables
    """

    def __init__(self, host, config) -> None:
        self.log = logging.getLogger("vmbal.cpubal")
        self.log.debug("SystemState()")

        self.host = host
        self.config = config
        self.vcpu_dict: dict[tuple, VCpuState] = {}
        self.cpu_count: int = 0

    def refresh_cpu_count(self) -> None:
        cpu_count = self.host.get_physical_cpu_count()
        if cpu_count != self.cpu_count:
            self.log.info(
                "physical CPU count {} -> {}".format(self.cpu_count, cpu_count)
            )
        self.cpu_count = cpu_count

    def sync_domains(self, vms) -> None:
        """
        Re-validate handles against the latest domain list and forget vCPUs
        of domains which are no longer active.
        """
        active = {vm.key: vm for vm in vms}
        for key, vcpu in list(self.vcpu_dict.items()):
            vm = active.get(key[0])
            if vm is None:
                self.log.debug("del_vcpu(key={!r})".format(key))
                del self.vcpu_dict[key]
            else:
                vcpu.vm = vm
                vcpu.fresh = False

    def vcpus(self) -> list:
        return list(self.vcpu_dict.values())

    def refresh_load(self) -> LoadModel:
        return LoadModel.from_vcpus(self.vcpus(), self.cpu_count)

    def pin(self, vcpu, dst, tick) -> bool:
        vm_log = vmbal.log.get_vm_logger(vcpu.vm.name)
        src = vcpu.pcpu
        try:
            self.host.set_vcpu_pin(vcpu.vm, vcpu.index, dst, self.cpu_count)
        except vmbal.exc.ActionFailedError as e:
            vm_log.error(
                "vCPU {} migration from pCPU {} to pCPU {} failed: {}".format(
                    vcpu.index, src, dst, e
                )
            )
            return False
        vm_log.info(
            "vCPU {} migrated from pCPU {} to pCPU {} "
            "(utilization {:.1f}%)".format(
                vcpu.index, src, dst, vcpu.utilization
            )
        )
        vcpu.pcpu = dst
        vcpu.migrated_tick = tick
        return True

    def print_stats(self, model, over, under) -> None:
        for pcpu in model.pcpus:
            self.log.info(
                "stat: pCPU {} load={:.2f} vcpus={}".format(
                    pcpu.id, pcpu.load, pcpu.vcpu_count
                )
            )
        self.log.info(
            "stat: mean={:.2f} stddev={:.2f} over={:.2f} under={:.2f} "
            "unassigned={}".format(
                model.mean, model.stddev, over, under, len(model.unassigned)
            )
        )

    def do_balance(self, tick) -> list:
        """
        Move vCPUs off physical CPUs loaded above mean + stddev onto the
        least loaded CPU below mean - stddev.

        The load model is updated after every successful move, so later
        candidates in the same tick see the result of earlier ones.

        :returns: list of ``(vcpu_key, src, dst)`` of applied migrations
        """
        self.log.debug("do_balance(tick={})".format(tick))
        if not self.cpu_count:
            return []
        model = self.refresh_load()
        over, under = vmbal.cpubal.algo.thresholds(model)
        self.print_stats(model, over, under)

        migrations = []
        for vcpu in vmbal.cpubal.algo.candidates(
            model, self.vcpus(), over, tick, self.config.migration_cooldown
        ):
            src = vcpu.pcpu
            if model.load(src) <= over:
                self.log.debug(
                    "pCPU {} no longer above {:.2f}, skipping vCPU {!r}".format(
                        src, over, vcpu.key
                    )
                )
                continue
            dst = vmbal.cpubal.algo.pick_destination(model, under)
            if dst is None:
                self.log.debug(
                    "no pCPU below {:.2f}, vCPU {!r} stays on {}".format(
                        under, vcpu.key, src
                    )
                )
                continue
            if self.pin(vcpu, dst, tick):
                model.move(vcpu.utilization, src, dst)
                migrations.append((vcpu.key, src, dst))
        return migrations
