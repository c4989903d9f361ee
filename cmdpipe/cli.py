#!/usr/bin/env python3
"""
cmdpipe command line

Usage:
    cmdpipe                       run the dispatcher in the foreground
    cmdpipe run
    cmdpipe setup                 create the named pipe and log directory
    cmdpipe install-service       write and start the systemd unit
    cmdpipe status
    cmdpipe send <command...>     write one command to the pipe
    cmdpipe logs [-n N] [-f]      show the command log
"""

import argparse
import logging
import os
import pwd
import shlex
import signal
import subprocess
import sys
from typing import List, Optional

from cmdpipe import __version__
from cmdpipe.channel import ensure_channel, open_channel, require_fifo, send_command
from cmdpipe.command_log import CommandLog
from cmdpipe.config import LOG_LEVELS, CmdPipeConfig, get_config_path, load_config
from cmdpipe.dispatcher import Dispatcher
from cmdpipe.errors import ChannelError, CmdPipeError
from cmdpipe.executor import build_executor
from cmdpipe.instance import InstanceLock
from cmdpipe.service import install_service, render_unit, service_status

logger = logging.getLogger('cmdpipe')

LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'


def setup_logging(level: str):
    """Configure diagnostic logging to stderr (journald picks it up)."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT)


def _terminate(signum, frame):
    raise SystemExit(0)


def run_dispatcher(config: CmdPipeConfig) -> int:
    """Run the dispatcher until a fatal channel error or a stop signal."""
    disp = config.dispatcher
    previous_handler = signal.signal(signal.SIGTERM, _terminate)

    try:
        ensure_channel(config.channel.path, config.channel.mode)
        if disp.app_dir:
            # commands run with the application directory as cwd
            os.makedirs(disp.app_dir, exist_ok=True)
        source = open_channel(config.channel)
        executor = build_executor(disp.shell, disp.blocked_patterns, cwd=disp.app_dir)
        command_log = CommandLog(disp.command_log_path)

        with InstanceLock(disp.pid_file_path):
            logger.info('cmdpipe %s started (framing=%s, log=%s)',
                        __version__, config.channel.framing, command_log.path)
            Dispatcher(source, executor, command_log).run()

    except ChannelError as e:
        logger.error('Channel error: %s', e)
        return 1
    except OSError as e:
        logger.error('Dispatcher stopped: %s', e)
        return 1
    except KeyboardInterrupt:
        logger.info('Interrupted')
    finally:
        signal.signal(signal.SIGTERM, previous_handler)
    return 0


def _service_dirs(config: CmdPipeConfig) -> List[str]:
    """Directories the service user must own, parents first."""
    disp = config.dispatcher
    leaves = [os.path.dirname(disp.command_log_path), os.path.dirname(disp.pid_file_path)]
    if not disp.app_dir:
        return leaves

    app_dir = os.path.abspath(disp.app_dir)
    dirs = [app_dir]
    for leaf in leaves:
        leaf = os.path.abspath(leaf)
        if leaf == app_dir:
            continue
        if os.path.commonpath([app_dir, leaf]) != app_dir:
            dirs.append(leaf)
            continue
        # every level between app_dir and the leaf
        parts = os.path.relpath(leaf, app_dir).split(os.sep)
        for i in range(1, len(parts) + 1):
            path = os.path.join(app_dir, *parts[:i])
            if path not in dirs:
                dirs.append(path)
    return dirs


def setup_host(config: CmdPipeConfig) -> int:
    """Install-time preparation: pipe, application, log and run directories."""
    try:
        ensure_channel(config.channel.path, config.channel.mode)
    except ChannelError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Named pipe ready at {config.channel.path} (mode {config.channel.mode:04o})")

    # setup runs as root, the unit runs as service.user
    owner = None
    if os.geteuid() == 0:
        try:
            entry = pwd.getpwnam(config.service.user)
        except KeyError:
            print(f"Error: service user {config.service.user!r} does not exist", file=sys.stderr)
            return 1
        owner = (entry.pw_uid, entry.pw_gid)

    for directory in _service_dirs(config):
        try:
            os.makedirs(directory, exist_ok=True)
            if owner:
                os.chown(directory, *owner)
        except OSError as e:
            print(f"Error: cannot prepare {directory}: {e}", file=sys.stderr)
            return 1

    print(f"Command log directory: {os.path.dirname(config.dispatcher.command_log_path)}")
    if owner:
        print(f"Directories owned by {config.service.user}")
    return 0


def show_status(config: CmdPipeConfig) -> int:
    try:
        require_fifo(config.channel.path)
        channel = 'ok'
    except ChannelError as e:
        channel = str(e)

    owner = InstanceLock(config.dispatcher.pid_file_path).owner()
    svc = service_status(config.service.name)

    print(f"Channel:    {config.channel.path} ({channel})")
    print(f"Framing:    {config.channel.framing}")
    print(f"Dispatcher: {'running (PID %d)' % owner if owner else 'not running'}")
    print(f"Service:    {config.service.name} active={svc['active']} enabled={svc['enabled']}")
    print(f"Log:        {config.dispatcher.command_log_path}")
    return 0 if channel == 'ok' and owner else 1


def show_logs(config: CmdPipeConfig, follow: bool, lines: int) -> int:
    log_path = config.dispatcher.command_log_path
    if not os.path.exists(log_path):
        print(f"No command log at {log_path}")
        return 1

    if follow:
        subprocess.run(["tail", "-n", str(lines), "-f", log_path])
        return 0

    for line in CommandLog(log_path).tail(lines):
        print(line)
    return 0


def format_command(words: List[str]) -> str:
    """
    Build the command line for `cmdpipe send`.

    A single argument is passed through untouched so pipes and redirects
    reach the dispatcher's shell ("cmdpipe send 'df -h > /tmp/df'").
    Several arguments are quoted so each stays one shell word.
    """
    if len(words) == 1:
        return words[0]
    return shlex.join(words)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cmdpipe',
        description="Run shell commands written to a named pipe by a container"
    )
    parser.add_argument('--config', help=f"Config file (default: {get_config_path()})")
    parser.add_argument('--log-level', type=str.upper, choices=LOG_LEVELS,
                        help="Override logging.level from the config")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run", help="Run the dispatcher in the foreground (default)")
    subparsers.add_parser("setup", help="Create the named pipe and log directory")

    install_parser = subparsers.add_parser("install-service", help="Install the systemd unit")
    install_parser.add_argument("--no-start", action="store_true",
                                help="Enable the unit without (re)starting it")
    install_parser.add_argument("--print", dest="print_only", action="store_true",
                                help="Print the unit instead of installing it")

    subparsers.add_parser("status", help="Show channel, dispatcher and service state")

    send_parser = subparsers.add_parser("send", help="Write one command to the pipe")
    send_parser.add_argument("words", nargs="+",
                             help="Command line; a single argument is sent verbatim")
    send_parser.add_argument("--no-wait", action="store_true",
                             help="Fail instead of blocking when no dispatcher is reading")

    logs_parser = subparsers.add_parser("logs", help="Show the command log")
    logs_parser.add_argument("-f", "--follow", action="store_true",
                             help="Follow log output")
    logs_parser.add_argument("-n", "--lines", type=int, default=50,
                             help="Number of lines to show")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except CmdPipeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(args.log_level or config.logging.level)

    command = args.command or "run"

    if command == "run":
        return run_dispatcher(config)

    elif command == "setup":
        return setup_host(config)

    elif command == "install-service":
        config_path = get_config_path(args.config)
        if not os.path.exists(config_path):
            config_path = None
        if args.print_only:
            print(render_unit(config, config_path=config_path), end='')
            return 0
        try:
            path = install_service(config, config_path=config_path, start=not args.no_start)
        except CmdPipeError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Installed {path}")
        return 0

    elif command == "status":
        return show_status(config)

    elif command == "send":
        try:
            send_command(config.channel.path, format_command(args.words),
                         config.channel.encoding, wait=not args.no_wait)
        except ChannelError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0

    elif command == "logs":
        return show_logs(config, args.follow, args.lines)

    return 0


if __name__ == "__main__":
    sys.exit(main())
