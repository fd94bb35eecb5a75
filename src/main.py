#!/usr/bin/env python
# -*- encoding: utf-8 -*-

"""
Join multicast groups and/or generate UDP test data.

- Receiver (default) joins one or more (S,G) or (*,G) sessions and shows a
  live plotter of arriving packets, statistics are printed on exit.
- Sender (-s) emits one sequence numbered datagram per group and period.
- Groups are given as [SOURCE,]GROUP[+NUM], e.g. 225.1.2.3+10 expands to
  ten consecutive groups.
- Use -h or --help to see all command line options.
Examples:
    mcjoin 225.1.2.3+5
    mcjoin -s -t 3 225.1.2.3+5
    mcjoin -o 10.0.0.1,232.1.1.1 ff2e::42
"""

############################## BEGIN IMPORTS ##################################

import argparse
import logging
import logging.handlers
import os
import sys
import time
from contextlib import contextmanager
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

############################## END IMPORTS ####################################

from config import CONFIG, VERSION, DEFAULT_GROUP, MAX_NUM_GROUPS
from config import BUFSZ, IFNAMSIZ, LOG_FORMAT, LOG_LEVELS
from curses_helper import Terminal, locale_context
from errors import ConfigurationError, ResourceError, TransportError
from groups import expand_into
from plotter import FullPlotter, LogBuffer, OldPlotter, Plotter, format_stats
from sigloop import SessionContext, SignalMux, main_loop
from storage import SessionTable
from transport import Receiver, Sender, Transport
from utils import daemonize, ifdefault, raise_nofile_limit

############################## BEGIN MAIN #####################################

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcjoin",
        description="Join a multicast group and/or generate UDP test data",
    )
    parser.add_argument('-b', dest='bytes', type=int,
                        default=CONFIG.get('bytes', 100),
                        help='Payload in bytes over IP/UDP header (42 bytes), default 100')
    parser.add_argument('-c', dest='count', type=int,
                        default=CONFIG.get('count', 0),
                        help='Stop sending/receiving after COUNT packets (per group)')
    parser.add_argument('-d', dest='foreground', action='store_false',
                        default=CONFIG.get('foreground', True),
                        help='Run as daemon in background, output to syslog')
    parser.add_argument('-f', dest='period', type=int, metavar='MSEC',
                        default=CONFIG.get('period', 100),
                        help='Frequency, poll/send every MSEC milliseconds, default 100')
    parser.add_argument('-i', dest='iface',
                        default=CONFIG.get('iface', ''),
                        help='Interface to use, default interface of default route')
    parser.add_argument('-j', dest='join', action='store_true',
                        default=CONFIG.get('join', True),
                        help='Join groups, default unless acting as sender')
    parser.add_argument('-l', dest='loglevel', metavar='LEVEL',
                        default=CONFIG.get('loglevel', 'notice'),
                        help='Set log level; none, notice*, debug')
    parser.add_argument('--logfile', dest='logfile',
                        default=CONFIG.get('logfile', ''),
                        help='Also log to this file, default none')
    parser.add_argument('-o', dest='old', action='store_true',
                        default=CONFIG.get('old', False),
                        help='Old (plain/ordinary) output, no fancy progress bars')
    parser.add_argument('-p', dest='port', type=int,
                        default=CONFIG.get('port', 1234),
                        help='UDP port number to send/listen to, default 1234')
    parser.add_argument('-s', dest='join', action='store_false',
                        help='Act as sender, sends packets to select groups')
    parser.add_argument('-t', dest='ttl', type=int,
                        default=CONFIG.get('ttl', 1),
                        help='TTL to use when sending multicast packets, default 1')
    parser.add_argument('-v', '--version', action='version', version=VERSION,
                        help='Display program version')
    parser.add_argument('-w', dest='wait', type=int, metavar='SEC',
                        default=CONFIG.get('wait', 0),
                        help='Initial wait before opening sockets')
    parser.add_argument('groups', nargs='*', metavar='[SOURCE,]GROUP[+NUM]',
                        help=f'Groups to join or send to, default {DEFAULT_GROUP}')
    return parser

def validate(args: argparse.Namespace) -> None:
    """
    Check option values that argparse cannot.

    Raises:
        ConfigurationError: On the first invalid value.
    """
    if args.bytes < 0 or args.bytes > BUFSZ:
        raise ConfigurationError(f"Too long payload, max {BUFSZ} bytes")

    if len(args.iface) >= IFNAMSIZ:
        raise ConfigurationError(
            f"Too long interface name, max {IFNAMSIZ - 1} chars."
        )

    if args.loglevel.lower() not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {args.loglevel}")

    if args.period < 1:
        raise ConfigurationError(f"Invalid period: {args.period} msec")

    if args.count < 0:
        raise ConfigurationError(f"Invalid count: {args.count}")

    if not 0 < args.port < 65536:
        raise ConfigurationError(f"Invalid port: {args.port}")

    if not 0 <= args.ttl < 256:
        raise ConfigurationError(f"Invalid TTL: {args.ttl}")

    if args.port < 1024 and os.geteuid():
        logger.error("Must be root to use privileged ports (< 1024)")

def build_table(
    tokens: Sequence[str],
    port: int,
    capacity: int = MAX_NUM_GROUPS,
) -> SessionTable:
    """
    Expand group tokens into a fully resolved session table.

    Args:
        tokens: [SOURCE,]GROUP[+NUM] tokens, the default group if empty.
        port: UDP port of every group endpoint.
        capacity: Maximum number of sessions.

    Returns:
        SessionTable with every session resolved and its history reset.

    Raises:
        ConfigurationError: On any invalid token, nothing is kept then.
    """
    table = SessionTable(capacity)

    for token in tokens or [DEFAULT_GROUP]:
        expand_into(table, token)

    table.resolve_all(port)
    logger.debug(
        "%d sessions, %d IPv4 and %d IPv6", len(table), table.need4, table.need6
    )
    return table

def setup_logging(
    loglevel: str,
    foreground: bool = True,
    full: bool = False,
    logfile: str = "",
) -> Optional[LogBuffer]:
    """
    Configure the root logger for the selected output mode.

    Full screen mode logs into the on-screen log region, plain mode to
    stderr and daemon mode to syslog. Level "none" disables logging.

    Returns:
        The LogBuffer feeding the log region in full screen mode.
    """
    level = LOG_LEVELS[loglevel.lower()]
    if level is None:
        logging.disable(logging.CRITICAL)
        return None

    logbuf = None
    handlers = []  # type: List[logging.Handler]

    if not foreground:
        address = "/dev/log" if os.path.exists("/dev/log") else ("localhost", 514)
        handler = logging.handlers.SysLogHandler(address=address)  # type: logging.Handler
        handler.setFormatter(logging.Formatter("mcjoin[%(process)d]: %(message)s"))
    elif full:
        handler = logbuf = LogBuffer()
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(handler)

    if logfile:
        handlers.append(logging.FileHandler(logfile))

    logging.basicConfig(
        format=LOG_FORMAT,
        level=level,
        handlers=handlers,
        force=True,
    )
    return logbuf

def create_transport(
    args: argparse.Namespace,
    table: SessionTable,
    ctx: SessionContext,
) -> Transport:
    if args.join:
        return Receiver(
            table, ctx, iface=args.iface, count=args.count, period=ctx.period
        )
    return Sender(
        table, ctx, iface=args.iface, ttl=args.ttl, size=args.bytes,
        count=args.count, period=ctx.period,
    )

def create_plotter(
    args: argparse.Namespace,
    table: SessionTable,
    full: bool,
    logbuf: Optional[LogBuffer] = None,
) -> Plotter:
    if not full:
        return OldPlotter(table, stream=sys.stdout if args.foreground else None)

    terminal = Terminal()
    terminal.size()
    return FullPlotter(
        terminal.open(), table, join=args.join, iface=args.iface, logbuf=logbuf
    )

@contextmanager
def application_context(plotter: Plotter):
    """
    Context manager to make sure the terminal is restored on the way out,
    whatever ends the main loop.
    """
    try:
        yield
    finally:
        try:
            plotter.close()
        except Exception:
            logger.exception("Failed restoring terminal")

def run(argv: Optional[Sequence[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        validate(args)
        table = build_table(args.groups, args.port)
    except ConfigurationError as e:
        logger.error(str(e))
        print(f"{parser.prog}: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    CONFIG.update(vars(args))

    full = args.foreground and not args.old
    if full and not sys.stdout.isatty():
        full = False

    if args.logfile:
        args.logfile = os.path.abspath(args.logfile)

    if not args.foreground:
        daemonize()

    logbuf = setup_logging(args.loglevel, args.foreground, full, args.logfile)

    if args.wait:
        time.sleep(args.wait)

    if not args.iface:
        args.iface = ifdefault()
        logger.debug("Using default interface %s", args.iface)

    try:
        raise_nofile_limit(MAX_NUM_GROUPS)
    except ResourceError as e:
        logger.error(str(e))
        print(f"{parser.prog}: {e}", file=sys.stderr)
        return 1

    ctx = SessionContext(table, period=args.period / 1000.0)
    transport = create_transport(args, table, ctx)

    rc = 0
    with locale_context():
        plotter = create_plotter(args, table, full, logbuf)
        with SignalMux(ctx) as mux:
            with application_context(plotter):
                try:
                    main_loop(ctx, transport, plotter, mux)
                except TransportError as e:
                    logger.error(str(e))
                    rc = 1

    if rc:
        print(f"{parser.prog}: transport failure, see log", file=sys.stderr)
    elif args.join:
        emit = print if args.foreground else logger.info
        for line in format_stats(table):
            emit(line)

    table.clear()
    return rc

def main() -> None:
    try:
        sys.exit(run())
    except KeyboardInterrupt:
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        logger.exception("Unhandled exception:")
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

############################## END MAIN #######################################

if __name__ == "__main__":
    main()
