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

'''vmbal command line tools
'''

import argparse
import logging

import vmbal.log


class VmbalArgumentParser(argparse.ArgumentParser):
    '''Parser preconfigured for use in vmbal command-line tools.

    *kwargs* are passed to :py:class:`argparser.ArgumentParser`.

    Currenty supported options:
        ``--verbose`` and ``--quiet``
    '''

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        self.add_argument('--verbose', '-v', action='count',
                          help='increase verbosity')

        self.add_argument('--quiet', '-q', action='count',
                          help='decrease verbosity')

        self.set_defaults(verbose=0, quiet=0)

    def error_runtime(self, message):
        '''Runtime error, without showing usage.

        :param str message: message to show
        '''
        self.exit(1, '{}: error: {}\n'.format(self.prog, message))

    @staticmethod
    def verbosity_given(namespace):
        return bool(namespace.verbose or namespace.quiet)

    @staticmethod
    def get_loglevel_from_verbosity(namespace):
        ''' Return loglevel calculated from quiet and verbose arguments '''
        return (namespace.quiet - namespace.verbose) * 10 + logging.INFO

    @staticmethod
    def set_verbosity(namespace):
        '''Apply a verbosity setting.

        This is done by configuring global logging.
        :param argparse.Namespace args: args as parsed by parser
        '''

        verbose = namespace.verbose - namespace.quiet

        if verbose >= 1:
            vmbal.log.enable_debug()
        else:
            vmbal.log.enable()


def positive_int(value):
    '''argparse type for a whole number of seconds greater than zero'''
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            'invalid interval: {!r}'.format(value))
    if number <= 0:
        raise argparse.ArgumentTypeError(
            'interval must be positive: {!r}'.format(value))
    return number
