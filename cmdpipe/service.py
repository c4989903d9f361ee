"""
cmdpipe Service Installation

The dispatcher does not daemonize or retry on its own. systemd keeps it
alive: the unit restarts it unconditionally after a fixed delay, runs it
under the service account and sets the working directory to the
application directory (where the command log lives).
"""

import logging
import os
import shlex
import subprocess
import sys
from typing import Dict, List, Optional

from cmdpipe.config import CmdPipeConfig
from cmdpipe.errors import CmdPipeError

logger = logging.getLogger(__name__)

UNIT_TEMPLATE = """\
[Unit]
Description={description}
After=multi-user.target

[Service]
User={user}
Type=simple
Restart={restart}
RestartSec={restart_sec}
WorkingDirectory={working_dir}
ExecStart={exec_start}

[Install]
WantedBy=multi-user.target
"""


def default_exec_start(config_path: Optional[str] = None) -> str:
    """Command line systemd uses to start the dispatcher."""
    args = [sys.executable, '-m', 'cmdpipe', 'run']
    if config_path:
        args += ['--config', config_path]
    return ' '.join(shlex.quote(a) for a in args)


def unit_path(config: CmdPipeConfig) -> str:
    return os.path.join(config.service.unit_dir, f'{config.service.name}.service')


def render_unit(config: CmdPipeConfig, exec_start: Optional[str] = None,
                config_path: Optional[str] = None) -> str:
    """
    Render the systemd unit for the dispatcher.

    Args:
        config: Loaded configuration
        exec_start: Override for ExecStart (default: this interpreter)
        config_path: Config file the service should be started with
    """
    svc = config.service
    return UNIT_TEMPLATE.format(
        description=svc.description,
        user=svc.user,
        restart=svc.restart,
        restart_sec=svc.restart_sec,
        working_dir=config.dispatcher.app_dir or os.getcwd(),
        exec_start=exec_start or default_exec_start(config_path),
    )


def _systemctl(*args: str) -> subprocess.CompletedProcess:
    return subprocess.run(['systemctl', *args], capture_output=True, text=True)


def install_service(config: CmdPipeConfig, exec_start: Optional[str] = None,
                    config_path: Optional[str] = None, start: bool = True) -> str:
    """
    Write the unit file, then enable and (re)start the service.

    Returns:
        Path of the unit file written

    Raises:
        CmdPipeError: the unit cannot be written or systemctl fails
    """
    path = unit_path(config)
    name = f'{config.service.name}.service'

    try:
        os.makedirs(config.service.unit_dir, exist_ok=True)
        with open(path, 'w') as f:
            f.write(render_unit(config, exec_start, config_path))
    except OSError as e:
        raise CmdPipeError(f'Cannot write unit file {path}: {e}') from e
    logger.info('Wrote %s', path)

    steps: List[List[str]] = [['daemon-reload'], ['enable', name]]
    if start:
        steps.append(['restart', name])

    for step in steps:
        try:
            result = _systemctl(*step)
        except OSError as e:
            raise CmdPipeError(f'Cannot run systemctl: {e}') from e
        if result.returncode != 0:
            raise CmdPipeError(
                f"systemctl {' '.join(step)} failed: {result.stderr.strip() or result.returncode}")
        logger.info('systemctl %s', ' '.join(step))

    return path


def service_status(name: str) -> Dict[str, str]:
    """
    Report the systemd state of the service.

    Returns:
        Dict with 'active' (systemctl is-active output, or 'unknown' when
        systemctl is unavailable) and 'enabled'
    """
    unit = f'{name}.service'
    status = {}
    for key, verb in (('active', 'is-active'), ('enabled', 'is-enabled')):
        try:
            result = _systemctl(verb, unit)
            status[key] = result.stdout.strip() or 'unknown'
        except OSError:
            status[key] = 'unknown'
    return status
