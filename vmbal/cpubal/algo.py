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
from typing import Optional

log = logging.getLogger("vmbal.cpubal.algo")


def thresholds(model) -> tuple:
    """Return ``(over, under)`` thresholds: mean plus/minus stddev."""
    mean = model.mean
    stddev = model.stddev
    return mean + stddev, mean - stddev


def overloaded(model, over) -> list:
    """Ids of physical CPUs whose load is strictly above *over*."""
    return [pcpu.id for pcpu in model.pcpus if pcpu.load > over]


def in_cooldown(vcpu, tick, cooldown) -> bool:
    # migrated in tick T, a candidate again from tick T + cooldown
    return (
        vcpu.migrated_tick is not None and tick - vcpu.migrated_tick < cooldown
    )


def candidates(model, vcpus, over, tick, cooldown) -> list:
    """
    vCPUs running on overloaded physical CPUs, in processing order:
    ascending pCPU id, then domain key, then vCPU index.
    """
    hot = set(overloaded(model, over))
    result = []
    for vcpu in vcpus:
        if vcpu.pcpu not in hot:
            continue
        if not vcpu.fresh:
            log.debug("vCPU %r was not sampled this tick, skipping", vcpu.key)
            continue
        if vcpu.utilization is None:
            log.debug("vCPU %r has no signal this tick, skipping", vcpu.key)
            continue
        if in_cooldown(vcpu, tick, cooldown):
            log.debug(
                "vCPU %r migrated in tick %d, cooling down",
                vcpu.key,
                vcpu.migrated_tick,
            )
            continue
        result.append(vcpu)
    result.sort(key=lambda vcpu: (vcpu.pcpu, vcpu.vm_key, vcpu.index))
    return result


def pick_destination(model, under) -> Optional[int]:
    """
    Least loaded physical CPU strictly below *under*, lowest id on ties.
    None if there is no such CPU.
    """
    below = [pcpu for pcpu in model.pcpus if pcpu.load < under]
    if not below:
        return None
    return min(below, key=lambda pcpu: (pcpu.load, pcpu.id)).id
