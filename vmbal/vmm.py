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

'''Management API of the virtualization host (libvirt).

Everything the balancers need from the hypervisor goes through
:py:class:`LibvirtHost`. It is the only place that knows about
:py:class:`libvirt.libvirtError`; failures are reported as
:py:mod:`vmbal.exc` exceptions instead.
'''

import collections.abc
import functools
import logging

import libvirt

import vmbal
import vmbal.config
import vmbal.exc


class VirDomainWrapper:
    # pylint: disable=too-few-public-methods

    def __init__(self, connection, vm):
        self._connection = connection
        self._vm = vm

    def _reconnect_if_dead(self):
        try:
            is_dead = not self._vm.connect().isAlive()
        except libvirt.libvirtError as ex:
            if ex.get_error_code() == libvirt.VIR_ERR_INVALID_CONN:
                # connection to libvirt was re-established in the meantime
                is_dead = True
            else:
                raise
        if is_dead:
            # pylint: disable=protected-access
            self._connection._reconnect_if_dead()
            self._vm = self._connection._conn.lookupByUUID(self._vm.UUID())
        return is_dead

    def __getattr__(self, attrname):
        attr = getattr(self._vm, attrname)
        if not isinstance(attr, collections.abc.Callable):
            return attr

        @functools.wraps(attr)
        def wrapper(*args, **kwargs):
            try:
                return attr(*args, **kwargs)
            except libvirt.libvirtError:
                if self._reconnect_if_dead():
                    return getattr(self._vm, attrname)(*args, **kwargs)
                raise

        return wrapper


class VirConnectWrapper:
    # pylint: disable=too-few-public-methods

    def __init__(self, uri):
        self._conn = libvirt.open(uri)

    def _reconnect_if_dead(self):
        is_dead = not self._conn.isAlive()
        if is_dead:
            uri = self._conn.getURI()
            old_conn = self._conn
            self._conn = libvirt.open(uri)
            old_conn.close()
        return is_dead

    def _wrap_domain(self, ret):
        if isinstance(ret, libvirt.virDomain):
            ret = VirDomainWrapper(self, ret)
        elif isinstance(ret, list):
            ret = [self._wrap_domain(item) for item in ret]
        return ret

    def __getattr__(self, attrname):
        attr = getattr(self._conn, attrname)
        if not isinstance(attr, collections.abc.Callable):
            return attr
        if attrname == 'close':
            return attr

        @functools.wraps(attr)
        def wrapper(*args, **kwargs):
            try:
                return self._wrap_domain(attr(*args, **kwargs))
            except libvirt.libvirtError:
                if self._reconnect_if_dead():
                    return self._wrap_domain(
                        getattr(self._conn, attrname)(*args, **kwargs))
                raise

        return wrapper


class VMMConnection:
    '''Connection to Virtual Machine Manager (libvirt)

    :param str uri: libvirt connection URI
    '''

    def __init__(self, uri=None):
        self.uri = uri or vmbal.config.defaults['libvirt_uri']
        self._libvirt_conn = None

    def _libvirt_error_handler(self, ctx, error):
        pass

    def init_vmm_connection(self):
        '''Initialise connection

        This method is automatically called when getting
        :py:attr:`libvirt_conn`.

        :raises vmbal.exc.HostConnectionError: when libvirt cannot be reached
        '''
        if self._libvirt_conn is not None:
            # Already initialized
            return

        try:
            self._libvirt_conn = VirConnectWrapper(self.uri)
        except libvirt.libvirtError as e:
            raise vmbal.exc.HostConnectionError(
                'Cannot connect to {}: {}'.format(self.uri, e)) from e
        libvirt.registerErrorHandler(self._libvirt_error_handler, None)

    @property
    def libvirt_conn(self):
        '''Connection to libvirt'''
        self.init_vmm_connection()
        return self._libvirt_conn

    def close(self):
        libvirt.registerErrorHandler(None, None)
        if self._libvirt_conn:
            self._libvirt_conn.close()
            self._libvirt_conn = None


class LibvirtHost:
    '''Host management API used by the sampler and both balancers.

    Counters are returned in libvirt's native units: CPU time in nanoseconds,
    memory in KiB.

    :param VMMConnection vmm: connection to use
    '''

    def __init__(self, vmm):
        self.vmm = vmm
        self.log = logging.getLogger('vmbal.vmm')

    def list_active_vms(self):
        '''List running domains.

        Domains which disappear while being listed are left out.

        :rtype: list[vmbal.VMHandle]
        :raises vmbal.exc.HostConnectionError:
        '''
        try:
            domains = self.vmm.libvirt_conn.listAllDomains(
                libvirt.VIR_CONNECT_LIST_DOMAINS_ACTIVE)
        except libvirt.libvirtError as e:
            raise vmbal.exc.HostConnectionError(
                'Cannot list domains: {}'.format(e)) from e

        vms = []
        for domain in domains:
            try:
                vms.append(vmbal.VMHandle(
                    domain.UUIDString(), domain.name(), domain))
            except libvirt.libvirtError as e:
                self.log.debug('domain vanished while listing: %s', e)
        return vms

    def get_vcpu_counters(self, vm):
        '''Return list of ``(vcpu_index, cpu_time_ns, running_on_cpu)``.

        :raises vmbal.exc.SampleUnavailableError:
        '''
        try:
            info, _cpumaps = vm.domain.vcpus()
        except libvirt.libvirtError as e:
            raise vmbal.exc.SampleUnavailableError(
                vm, 'Cannot read vCPU counters of {}: {}'.format(vm.name, e)
            ) from e
        return [(number, cpu_time, cpu)
            for number, _state, cpu_time, cpu in info]

    def get_vcpu_pin_mask(self, vm, vcpu_index):
        '''Return the vCPU's allowed physical CPUs as an integer bitmask.

        :raises vmbal.exc.SampleUnavailableError:
        '''
        try:
            pin_info = vm.domain.vcpuPinInfo(0)
            cpumap = pin_info[vcpu_index]
        except (libvirt.libvirtError, IndexError) as e:
            raise vmbal.exc.SampleUnavailableError(
                vm, 'Cannot read pinning of {} vCPU {}: {}'.format(
                    vm.name, vcpu_index, e)) from e
        mask = 0
        for cpu, allowed in enumerate(cpumap):
            if allowed:
                mask |= 1 << cpu
        return mask

    def set_vcpu_pin(self, vm, vcpu_index, cpu, cpu_count):
        '''Restrict the vCPU to exactly one physical CPU.

        :param int cpu: destination physical CPU
        :param int cpu_count: number of physical CPUs (length of the map)
        :raises vmbal.exc.ActionFailedError:
        '''
        cpumap = tuple(i == cpu for i in range(cpu_count))
        try:
            ret = vm.domain.pinVcpu(vcpu_index, cpumap)
        except libvirt.libvirtError as e:
            raise vmbal.exc.ActionFailedError(
                vm, 'Cannot pin {} vCPU {} to {}: {}'.format(
                    vm.name, vcpu_index, cpu, e)) from e
        if ret != 0:
            raise vmbal.exc.ActionFailedError(
                vm, 'Cannot pin {} vCPU {} to {}: error {}'.format(
                    vm.name, vcpu_index, cpu, ret))

    def get_domain_memory_counters(self, vm):
        '''Return balloon statistics of the domain, in KiB.

        The returned dict has ``unused``, ``available``, ``actual``,
        ``swap_in`` and ``swap_out`` keys. Statistics the guest does not
        report are returned as ``None``, except ``unused`` whose absence
        means the guest balloon driver does not report at all.

        :raises vmbal.exc.SampleUnavailableError:
        '''
        try:
            stats = vm.domain.memoryStats()
        except libvirt.libvirtError as e:
            raise vmbal.exc.SampleUnavailableError(
                vm, 'Cannot read memory statistics of {}: {}'.format(
                    vm.name, e)) from e
        if 'unused' not in stats or 'actual' not in stats:
            raise vmbal.exc.SampleUnavailableError(
                vm, 'Domain {} does not report balloon statistics'.format(
                    vm.name))
        return {
            'unused': stats['unused'],
            'available': stats.get('available'),
            'actual': stats['actual'],
            'swap_in': stats.get('swap_in'),
            'swap_out': stats.get('swap_out'),
        }

    def get_domain_max_memory(self, vm):
        '''Maximum memory the domain may be given, in KiB.

        :raises vmbal.exc.SampleUnavailableError:
        '''
        try:
            return vm.domain.maxMemory()
        except libvirt.libvirtError as e:
            raise vmbal.exc.SampleUnavailableError(
                vm, 'Cannot read maximum memory of {}: {}'.format(
                    vm.name, e)) from e

    def set_domain_memory(self, vm, target):
        '''Set balloon target of the domain, in KiB.

        :raises vmbal.exc.ActionFailedError:
        '''
        try:
            ret = vm.domain.setMemory(int(target))
        except libvirt.libvirtError as e:
            raise vmbal.exc.ActionFailedError(
                vm, 'Cannot set memory of {} to {}: {}'.format(
                    vm.name, target, e)) from e
        if ret != 0:
            raise vmbal.exc.ActionFailedError(
                vm, 'Cannot set memory of {} to {}: error {}'.format(
                    vm.name, target, ret))

    def enable_memory_stats(self, vm, period):
        '''Ask the balloon driver to refresh statistics every *period* s.

        :raises vmbal.exc.ActionFailedError:
        '''
        try:
            vm.domain.setMemoryStatsPeriod(int(period))
        except libvirt.libvirtError as e:
            raise vmbal.exc.ActionFailedError(
                vm, 'Cannot set memory statistics period of {}: {}'.format(
                    vm.name, e)) from e

    def get_host_memory_totals(self):
        '''Return ``{'total': KiB, 'free': KiB}`` for the whole host.

        :raises vmbal.exc.HostConnectionError:
        '''
        try:
            stats = self.vmm.libvirt_conn.getMemoryStats(
                libvirt.VIR_NODE_MEMORY_STATS_ALL_CELLS)
        except libvirt.libvirtError as e:
            raise vmbal.exc.HostConnectionError(
                'Cannot read host memory statistics: {}'.format(e)) from e
        return {'total': stats['total'], 'free': stats['free']}

    def get_physical_cpu_count(self):
        '''Number of physical CPUs of the host.

        :raises vmbal.exc.HostConnectionError:
        '''
        try:
            # pylint: disable=unused-variable
            (model, memory, cpus, mhz, nodes, socket, cores, threads) = \
                self.vmm.libvirt_conn.getInfo()
        except libvirt.libvirtError as e:
            raise vmbal.exc.HostConnectionError(
                'Cannot read host CPU information: {}'.format(e)) from e
        return cpus
