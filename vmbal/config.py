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

'''Constants and configuration file handling'''

import configparser
import dataclasses
import logging

import vmbal.exc
import vmbal.utils

#: sizes are given in KiB unless stated otherwise
KiB = 1
MiB = 1024 * KiB

#: a vCPU migrated in tick T stays put at least through tick T + 1
MIN_MIGRATION_COOLDOWN = 2

defaults = {
    'config_file': '/etc/vmbal/vmbal.conf',
    'libvirt_uri': 'qemu:///system',
    'pause_file': '/run/vmbal/do-not-balance',
}

#: keys of the ``[global]`` section and their default values
config_defaults = {
    'vm-min-unused': '100MiB',
    'vm-min-mem': '200MiB',
    'host-min-free': '200MiB',
    'mem-step': '64MiB',
    'migration-cooldown': '2',
    'balance-cpu': 'yes',
    'balance-memory': 'yes',
    'libvirt-uri': defaults['libvirt_uri'],
    'pause-file': defaults['pause_file'],
    'log-level': str(logging.INFO),
}


@dataclasses.dataclass
class BalancerConfig:
    '''Tunables shared by both balancers, threaded through every tick.'''

    #: guest unused memory below this makes the domain hungry
    vm_min_unused: int = 100 * MiB
    #: no domain is ever given less than this
    vm_min_mem: int = 200 * MiB
    #: host free memory must stay at or above this
    host_min_free: int = 200 * MiB
    #: memory adjustment step
    mem_step: int = 64 * MiB
    #: number of ticks before a migrated vCPU may be migrated again
    migration_cooldown: int = MIN_MIGRATION_COOLDOWN
    balance_cpu: bool = True
    balance_memory: bool = True
    libvirt_uri: str = defaults['libvirt_uri']
    pause_file: str = defaults['pause_file']
    log_level: int = logging.INFO


def _size_kib(value):
    return vmbal.utils.parse_size(value) // 1024


def _cooldown(value):
    if value < MIN_MIGRATION_COOLDOWN:
        raise vmbal.exc.VmbalException(
            'Invalid migration-cooldown: {}, must be at least {}.'.format(
                value, MIN_MIGRATION_COOLDOWN))
    return value


def load_config(path=None):
    '''Read configuration file and return :py:class:`BalancerConfig`.

    Missing file (or missing ``[global]`` section) means built-in defaults.

    :param str path: path to the INI file
    :raises vmbal.exc.VmbalException: on invalid size or a migration
        cooldown too short to prevent back-and-forth migration
    :raises ValueError: on other invalid values
    '''
    if path is None:
        path = defaults['config_file']
    parser = configparser.ConfigParser(config_defaults)
    parser.read(path)
    if not parser.has_section('global'):
        return BalancerConfig()

    return BalancerConfig(
        vm_min_unused=_size_kib(parser.get('global', 'vm-min-unused')),
        vm_min_mem=_size_kib(parser.get('global', 'vm-min-mem')),
        host_min_free=_size_kib(parser.get('global', 'host-min-free')),
        mem_step=_size_kib(parser.get('global', 'mem-step')),
        migration_cooldown=_cooldown(
            parser.getint('global', 'migration-cooldown')),
        balance_cpu=parser.getboolean('global', 'balance-cpu'),
        balance_memory=parser.getboolean('global', 'balance-memory'),
        libvirt_uri=parser.get('global', 'libvirt-uri'),
        pause_file=parser.get('global', 'pause-file'),
        log_level=parser.getint('global', 'log-level'),
    )
