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

"""
vmbal exception hierarchy
"""


class VmbalException(Exception):
    """Exception that can be shown to the operator"""


class VmbalVMError(VmbalException):
    """Some problem with a particular domain."""

    def __init__(self, vm, msg):
        super().__init__(msg)
        self.vm = vm


class SampleUnavailableError(VmbalVMError):
    """Counters of a domain could not be read.

    The domain may have disappeared in the middle of a tick, or the read
    failed transiently. The affected entity is skipped for this tick.
    """

    def __init__(self, vm, msg=None):
        super().__init__(
            vm, msg or "Counters unavailable for domain {!r}".format(vm.name)
        )


class ActionFailedError(VmbalVMError):
    """Pinning a vCPU or setting a memory target was refused."""

    def __init__(self, vm, msg=None):
        super().__init__(
            vm, msg or "Action failed for domain {!r}".format(vm.name)
        )


class HostConnectionError(VmbalException, ConnectionError):
    """The management API cannot be reached.

    Raised when the domain list or host-wide counters cannot be read. The
    whole tick is skipped.
    """
