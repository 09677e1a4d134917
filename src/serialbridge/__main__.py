"""
Runs one bridge instance.

    serial-tcp-bridge [--base-dir DIR] [--non-interactive] [-v]
    python -m serialbridge [--base-dir DIR] [--non-interactive] [-v]

Exits 0 when the operator quits or presses Ctrl-C, and 1 on a fatal error.
"""

import argparse
import logging
import os
import sys

from serialbridge.errors import QuitRequested
from serialbridge.supervisor import BridgeSupervisor

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='serial-tcp-bridge',
        description="Bridge a USB serial device to a TCP port, reconnecting when either side drops."
    )
    parser.add_argument(
        '--base-dir',
        default=os.getcwd(),
        help="directory holding the configuration, state and health files (default: the current directory)",
    )
    parser.add_argument(
        '--non-interactive',
        action='store_true',
        help="never prompt; fail if no device can be selected automatically",
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='store_true',
        help="log at debug level",
    )
    return parser.parse_args(argv)


def main(argv=None, stdin=None, stdout=None, stderr=None):
    args = parse_args(argv)
    stdin = stdin or sys.stdin
    stderr = stderr or sys.stderr
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    interactive = not args.non_interactive and stdin.isatty()
    supervisor = BridgeSupervisor(args.base_dir, interactive=interactive, verbose=args.verbose,
                                  stdin=stdin, stdout=stdout)
    try:
        supervisor.run()
    except (QuitRequested, KeyboardInterrupt):
        return 0
    except Exception as e:
        logger.debug("fatal error", exc_info=True)
        print("FATAL: %s" % e, file=stderr)
        return 1
    return 0


if __name__ == '__main__':  # pragma no cover
    sys.exit(main())
