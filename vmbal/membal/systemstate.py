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

import vmbal.exc
import vmbal.log
import vmbal.membal.algo
from vmbal.loadmodel import MemoryModel
from vmbal.membal.domainstate import DomainState, HostMemoryState


def unique_per_list(list1, list2):
    first = [item for item in list1 if item not in list2]
    second = [item for item in list2 if item not in list1]
    return first, second


class SystemState:
    """
    Owns memory state of all domains and of the host, and applies memory
    targets.

    :param host: management API, see :py:class:`vmbal.vmm.LibvirtHost`
    :param vmbal.config.BalancerConfig config: tunables
    :param int stats_period: balloon statistics period to request from newly
        seen domains, in seconds; None to leave it as it is
    """

    def __init__(self, host, config, stats_period=None) -> None:
        self.log = logging.getLogger("vmbal.membal")
        self.log.debug("SystemState()")

        self.host = host
        self.config = config
        self.stats_period = stats_period
        self.dom_dict: dict[str, DomainState] = {}
        self.host_mem = HostMemoryState()

    def add_domain(self, vm) -> None:
        self.log.debug("add_domain(key={!r})".format(vm.key))
        dom = DomainState(vm.key)
        dom.vm = vm
        self.dom_dict[vm.key] = dom
        if self.stats_period:
            try:
                self.host.enable_memory_stats(vm, self.stats_period)
            except vmbal.exc.ActionFailedError as e:
                self.log.warning("{}".format(e))

    def del_domain(self, key) -> None:
        self.log.debug("del_domain(key={!r})".format(key))
        self.dom_dict.pop(key)

    def sync_domains(self, vms) -> None:
        """
        Add newly started domains, drop stopped ones and re-validate
        handles of the remaining ones against the latest domain list.
        """
        active = {vm.key: vm for vm in vms}
        created, destroyed = unique_per_list(active, list(self.dom_dict))
        for key in destroyed:
            self.del_domain(key)
        for key in created:
            self.add_domain(active[key])
        for key, dom in self.dom_dict.items():
            dom.vm = active[key]
            dom.fresh = False

    def refresh_host_mem(self) -> None:
        totals = self.host.get_host_memory_totals()
        self.host_mem.update(totals["total"], totals["free"])

    def clamp(self, dom, target) -> int:
        return max(self.config.vm_min_mem, min(int(target), dom.mem_max))

    def mem_set(self, dom, target) -> bool:
        """
        Set memory target of *dom*, clamped to ``[vm_min_mem, mem_max]``.

        Derived state is only updated once the host confirmed the change.
        """
        target = self.clamp(dom, target)
        vm_log = vmbal.log.get_vm_logger(dom.vm.name)
        before = dom.mem_actual
        try:
            self.host.set_domain_memory(dom.vm, target)
        except vmbal.exc.ActionFailedError as e:
            vm_log.error(
                "mem-set from {} to {} KiB failed: {}".format(before, target, e)
            )
            return False
        vm_log.info(
            "mem-set from {} to {} KiB ({:+d})".format(
                before, target, target - before
            )
        )
        dom.last_target = target
        dom.mem_actual = target
        return True

    def print_stats(self, model, hungry, donors) -> None:
        for key, dom in self.dom_dict.items():
            if not dom.samples:
                continue
            self.log.info(
                "stat: dom {!r} act={} target={} max={} unused={} "
                "unused_ratio={:.3f} falling={}{}{}{}".format(
                    dom.vm.name,
                    dom.mem_actual,
                    dom.last_target or "-",
                    dom.mem_max,
                    dom.mem_unused,
                    model.unused_ratio.get(key, 0.0),
                    dom.falling_samples,
                    " swapping" if dom.swapping else "",
                    " hungry" if key in hungry else "",
                    " donor" if key in donors else "",
                )
            )
        self.log.info(
            "stat: host total={} free={} ratio={:.3f} baseline={} "
            "change={:+.3f}".format(
                model.mem_total,
                model.mem_free,
                model.free_ratio,
                model.baseline_free_ratio,
                model.free_ratio_change,
            )
        )

    def _transfer(self, acceptor, donor, amount, host_free) -> tuple:
        """
        Shrink donor, then grow acceptor. Returns (actions, host_free).

        The host is debited what the acceptor actually gained and credited
        whatever the donor released beyond *amount*.
        """
        actions = []
        donor_before = donor.mem_actual
        if not self.mem_set(donor, donor_before - amount):
            return None, host_free
        actions.append((donor.key, donor_before, donor.mem_actual))
        released = donor_before - donor.mem_actual
        acceptor_before = acceptor.mem_actual
        if not self.mem_set(acceptor, acceptor_before + amount):
            # released by the donor, nobody took it
            return actions, host_free + released
        actions.append((acceptor.key, acceptor_before, acceptor.mem_actual))
        gained = acceptor.mem_actual - acceptor_before
        return actions, host_free - gained + (released - amount)

    def do_balance(self) -> list:
        """
        Move memory from donors to hungry domains, one step at a time.

        Pairs are served first; remaining hungry domains are grown from host
        free memory and remaining donors are shrunk. Growing stops as soon as
        the host would be left with less than ``host_min_free``. The host
        free figure read at the beginning of the tick is only adjusted by
        this bookkeeping afterwards.

        :returns: list of ``(domain_key, before, after)`` of applied targets
        """
        self.log.debug("do_balance()")
        config = self.config
        algo = vmbal.membal.algo
        hungry, donors = algo.classify(self.dom_dict, config)
        self.print_stats(
            MemoryModel(self.host_mem, self.dom_dict), hungry, donors
        )

        host_free = self.host_mem.mem_free
        actions = []
        exhausted = False
        i = j = 0
        while i < len(hungry) and j < len(donors):
            acceptor = self.dom_dict[hungry[i]]
            donor = self.dom_dict[donors[j]]
            amount = min(
                algo.spare_mem(donor, config), algo.grow_room(acceptor)
            )
            grow = (
                self.clamp(acceptor, acceptor.mem_actual + amount)
                - acceptor.mem_actual
            )
            if host_free - grow < config.host_min_free:
                self.log.info(
                    "host free {} KiB would drop below {} KiB, "
                    "stopping".format(host_free - grow, config.host_min_free)
                )
                exhausted = True
                break
            done, host_free = self._transfer(
                acceptor, donor, amount, host_free
            )
            j += 1
            if done is None:
                # donor refused, try the next one for the same acceptor
                continue
            actions.extend(done)
            i += 1

        while not exhausted and i < len(hungry):
            acceptor = self.dom_dict[hungry[i]]
            before = acceptor.mem_actual
            amount = min(config.mem_step, algo.grow_room(acceptor))
            grow = self.clamp(acceptor, before + amount) - before
            if host_free - grow < config.host_min_free:
                self.log.info(
                    "host free {} KiB would drop below {} KiB, "
                    "stopping".format(host_free - grow, config.host_min_free)
                )
                break
            if self.mem_set(acceptor, before + grow):
                actions.append((acceptor.key, before, acceptor.mem_actual))
                host_free -= acceptor.mem_actual - before
            i += 1

        for key in donors[j:]:
            donor = self.dom_dict[key]
            amount = algo.spare_mem(donor, config)
            before = donor.mem_actual
            if self.mem_set(donor, before - amount):
                actions.append((donor.key, before, donor.mem_actual))
                host_free += before - donor.mem_actual

        self.log.debug("host free after balance: {} KiB".format(host_free))
        self.host_mem.mem_free = host_free
        return actions
