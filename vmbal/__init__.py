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

'''
vmbal

Host-resident control loop which rebalances virtual CPUs across physical CPUs
and resizes guest memory balloons, based on periodically sampled counters.
'''

__license__ = 'LGPLv2.1 or later'
__version__ = '1.0.0'


class VMHandle:
    '''Reference to an active domain, valid for one tick only.

    The underlying domain object belongs to the management connection; it is
    borrowed for the duration of a tick and must be looked up again (through
    a fresh domain listing) before being used in the next one. Derived state
    kept across ticks is correlated by :py:attr:`key`, never by the domain
    object itself.

    :param str key: stable identity (domain UUID)
    :param str name: domain name, for logging
    :param domain: management API domain object
    '''

    def __init__(self, key, name, domain=None):
        #: stable identity, used to correlate derived state across ticks
        self.key = key
        #: human readable name
        self.name = name
        #: borrowed management API object
        self.domain = domain

    def __repr__(self):
        return '<{} key={!r} name={!r}>'.format(
            type(self).__name__, self.key, self.name)

    def __eq__(self, other):
        if isinstance(other, VMHandle):
            return self.key == other.key
        return NotImplemented

    def __hash__(self):
        return hash(self.key)

    def __lt__(self, other):
        if isinstance(other, VMHandle):
            return self.key < other.key
        return NotImplemented
