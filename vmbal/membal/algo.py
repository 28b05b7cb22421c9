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

log = logging.getLogger("vmbal.membal.algo")

# A domain needs this many samples before its trend is known and it takes
# part in balancing; the first sample never triggers an action.
MIN_SAMPLES = 2
# Number of consecutive drops of unused memory that make a domain hungry.
FALLING_SAMPLES_HUNGRY = 2


def is_hungry(dom, config) -> bool:
    """Guest is short on memory: low unused, steadily falling, or swapping."""
    return (
        dom.mem_unused < config.vm_min_unused
        or dom.falling_samples >= FALLING_SAMPLES_HUNGRY
        or dom.swapping
    )


def is_donor(dom, config) -> bool:
    """Guest has idle memory above the floor plus one step, not falling."""
    return (
        dom.mem_unused > config.vm_min_unused + config.mem_step
        and dom.falling_samples == 0
        and not dom.swapping
    )


def grow_room(dom) -> int:
    return max(0, dom.mem_max - dom.mem_actual)


def spare_mem(dom, config) -> int:
    """Memory a donor can give away this tick, at most one step."""
    return max(
        0,
        min(
            config.mem_step,
            dom.mem_unused - config.vm_min_unused,
            dom.mem_actual - config.vm_min_mem,
        ),
    )


def classify(dom_dict, config) -> tuple:
    """
    Split domains into hungry ones and donors.

    Only domains sampled in the current tick, with a known trend, are
    considered. Hungry domains already at their maximum and donors already
    at the floor are left out. Both lists are ordered by domain key.

    :returns: ``(hungry_keys, donor_keys)``
    """
    hungry = []
    donors = []
    for key in sorted(dom_dict):
        dom = dom_dict[key]
        if not dom.fresh or dom.samples < MIN_SAMPLES:
            continue
        if is_hungry(dom, config):
            if grow_room(dom) > 0:
                hungry.append(key)
            else:
                log.debug("dom %s is hungry but at its maximum", key)
        elif is_donor(dom, config):
            if spare_mem(dom, config) > 0:
                donors.append(key)
            else:
                log.debug("dom %s has idle memory but is at the floor", key)
    return hungry, donors
