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

'''vmbald - balance vCPUs and memory of local virtual machines'''

import logging
import signal
import sys

import vmbal.config
import vmbal.exc
import vmbal.log
import vmbal.scheduler
import vmbal.tools
import vmbal.utils
import vmbal.vmm

parser = vmbal.tools.VmbalArgumentParser(
    description='Periodically rebalance vCPU pinning and guest memory of '
        'virtual machines running on this host.')

parser.add_argument('--config', '-c', metavar='FILE',
    action='store', default=vmbal.config.defaults['config_file'],
    help='vmbal config file (default: %(default)s)')

parser.add_argument('--connect', metavar='URI',
    action='store', default=None,
    help='libvirt connection URI (default: taken from config file)')

parser.add_argument('--foreground', '-f',
    action='store_true', default=False,
    help='log to stderr and do not close stdio')

parser.add_argument('interval', metavar='INTERVAL',
    type=vmbal.tools.positive_int,
    help='sampling interval in seconds')


def main(args=None):
    args = parser.parse_args(args)

    if args.foreground:
        parser.set_verbosity(args)
    else:
        sys.stdin.close()
    vmbal.log.enable_syslog()

    log = logging.getLogger('vmbal.daemon')

    try:
        config = vmbal.config.load_config(args.config)
    except (vmbal.exc.VmbalException, ValueError) as e:
        parser.error_runtime('invalid config file {}: {}'.format(
            args.config, e))

    if parser.verbosity_given(args):
        logging.root.setLevel(parser.get_loglevel_from_verbosity(args))
    else:
        logging.root.setLevel(config.log_level)

    if args.connect:
        config.libvirt_uri = args.connect

    log.info(
        'vm-min-unused={} vm-min-mem={} host-min-free={} mem-step={} '
        'migration-cooldown={} balance-cpu={} balance-memory={}'.format(
            vmbal.utils.kbytes_to_kmg(config.vm_min_unused),
            vmbal.utils.kbytes_to_kmg(config.vm_min_mem),
            vmbal.utils.kbytes_to_kmg(config.host_min_free),
            vmbal.utils.kbytes_to_kmg(config.mem_step),
            config.migration_cooldown,
            config.balance_cpu,
            config.balance_memory))

    vmm = vmbal.vmm.VMMConnection(config.libvirt_uri)
    try:
        vmm.init_vmm_connection()
    except vmbal.exc.HostConnectionError as e:
        parser.error_runtime(str(e))

    host = vmbal.vmm.LibvirtHost(vmm)
    scheduler = vmbal.scheduler.Scheduler(host, config, args.interval)

    def handle_signal(signum, _frame):
        log.info('got signal {}, stopping after current tick'.format(
            signal.Signals(signum).name))
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    vmbal.utils.systemd_notify()
    try:
        scheduler.run()
    finally:
        scheduler.close()
        vmm.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
