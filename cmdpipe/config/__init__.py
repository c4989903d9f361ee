"""
cmdpipe Configuration Module

Loads and provides access to dispatcher configuration from a YAML file.

Lookup order:
- explicit path passed to load_config()
- CMDPIPE_CONFIG environment variable
- /etc/cmdpipe/config.yaml

A missing file is not an error; defaults match the original field
installation (/opt/cmdpipe/dockerpipe, dockerpipe.service).
"""

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

import yaml

from cmdpipe.errors import ConfigError

DEFAULT_CONFIG_PATH = '/etc/cmdpipe/config.yaml'
CONFIG_ENV_VAR = 'CMDPIPE_CONFIG'

FRAMINGS = ('close', 'line')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class ChannelConfig:
    """Named pipe configuration."""
    path: str = '/opt/cmdpipe/dockerpipe'
    mode: int = 0o666
    framing: str = 'close'
    encoding: str = 'utf-8'


@dataclass
class DispatcherConfig:
    """Dispatcher loop configuration."""
    app_dir: Optional[str] = None
    command_log: str = 'logs/system/commands.log'
    pid_file: str = 'run/cmdpipe.pid'
    shell: str = '/bin/bash'
    blocked_patterns: List[str] = field(default_factory=list)

    def resolve(self, relative: str) -> str:
        """Resolve a path relative to the application directory."""
        if os.path.isabs(relative):
            return relative
        return os.path.join(self.app_dir or os.getcwd(), relative)

    @property
    def command_log_path(self) -> str:
        return self.resolve(self.command_log)

    @property
    def pid_file_path(self) -> str:
        return self.resolve(self.pid_file)


@dataclass
class ServiceConfig:
    """systemd unit configuration (restart policy lives here)."""
    name: str = 'dockerpipe'
    description: str = 'Dockerpipe command dispatcher'
    user: str = 'bs'
    restart: str = 'always'
    restart_sec: int = 10
    unit_dir: str = '/etc/systemd/system'


@dataclass
class LoggingConfig:
    """Diagnostic logging configuration."""
    level: str = 'INFO'


@dataclass
class CmdPipeConfig:
    """Complete cmdpipe configuration."""
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def get_config_path(config_path: Optional[str] = None) -> str:
    """Get the path of the config file that load_config() would read."""
    if config_path:
        return config_path
    return os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def _parse_mode(value) -> int:
    """Accept 0o666, 438 or the string '0666'."""
    if isinstance(value, bool):
        raise ConfigError(f'Invalid channel mode: {value!r}')
    if isinstance(value, int):
        mode = value
    else:
        try:
            mode = int(str(value), 8)
        except ValueError:
            raise ConfigError(f'Invalid channel mode: {value!r}') from None
    if not 0 <= mode <= 0o7777:
        raise ConfigError(f'Channel mode out of range: {value!r}')
    return mode


def update_config_from_dict(config: CmdPipeConfig, data: dict) -> CmdPipeConfig:
    """
    Apply values from a dictionary onto a config.

    Args:
        config: CmdPipeConfig to update in place
        data: Dictionary laid out like the YAML file

    Returns:
        The updated CmdPipeConfig
    """
    if not isinstance(data, dict):
        raise ConfigError('Configuration root must be a mapping')

    # Channel settings
    ch = data.get('channel') or {}
    if 'path' in ch:
        config.channel.path = str(ch['path'])
    if 'mode' in ch:
        config.channel.mode = _parse_mode(ch['mode'])
    if 'framing' in ch:
        framing = str(ch['framing']).lower()
        if framing not in FRAMINGS:
            raise ConfigError(f'Unknown framing {framing!r}, expected one of {FRAMINGS}')
        config.channel.framing = framing
    if 'encoding' in ch:
        config.channel.encoding = str(ch['encoding'])

    # Dispatcher settings
    disp = data.get('dispatcher') or {}
    if 'app_dir' in disp:
        config.dispatcher.app_dir = str(disp['app_dir']) if disp['app_dir'] else None
    if 'command_log' in disp:
        config.dispatcher.command_log = str(disp['command_log'])
    if 'pid_file' in disp:
        config.dispatcher.pid_file = str(disp['pid_file'])
    if 'shell' in disp:
        config.dispatcher.shell = str(disp['shell'])
    if 'blocked_patterns' in disp:
        patterns = disp['blocked_patterns'] or []
        if not isinstance(patterns, list):
            raise ConfigError('dispatcher.blocked_patterns must be a list')
        patterns = [str(p) for p in patterns]
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigError(f'Invalid blocked pattern {pattern!r}: {e}') from None
        config.dispatcher.blocked_patterns = patterns

    # Service settings
    svc = data.get('service') or {}
    if 'name' in svc:
        config.service.name = str(svc['name'])
    if 'description' in svc:
        config.service.description = str(svc['description'])
    if 'user' in svc:
        config.service.user = str(svc['user'])
    if 'restart' in svc:
        config.service.restart = str(svc['restart'])
    if 'restart_sec' in svc:
        try:
            config.service.restart_sec = int(svc['restart_sec'])
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid service.restart_sec: {svc['restart_sec']!r}") from None
    if 'unit_dir' in svc:
        config.service.unit_dir = str(svc['unit_dir'])

    # Logging settings
    log = data.get('logging') or {}
    if 'level' in log:
        level = str(log['level']).upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f'Unknown log level {level!r}')
        config.logging.level = level

    return config


def load_config(config_path: Optional[str] = None) -> CmdPipeConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to config file (default: see get_config_path)

    Returns:
        CmdPipeConfig instance
    """
    path = get_config_path(config_path)
    config = CmdPipeConfig()

    if not os.path.exists(path):
        return config

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f'Failed to read config {path}: {e}') from e

    return update_config_from_dict(config, data)


def config_to_dict(config: CmdPipeConfig) -> dict:
    """Convert a CmdPipeConfig to the dictionary layout of the YAML file."""
    return {
        'channel': {
            'path': config.channel.path,
            'mode': f'{config.channel.mode:04o}',
            'framing': config.channel.framing,
            'encoding': config.channel.encoding,
        },
        'dispatcher': {
            'app_dir': config.dispatcher.app_dir,
            'command_log': config.dispatcher.command_log,
            'pid_file': config.dispatcher.pid_file,
            'shell': config.dispatcher.shell,
            'blocked_patterns': list(config.dispatcher.blocked_patterns),
        },
        'service': {
            'name': config.service.name,
            'description': config.service.description,
            'user': config.service.user,
            'restart': config.service.restart,
            'restart_sec': config.service.restart_sec,
            'unit_dir': config.service.unit_dir,
        },
        'logging': {
            'level': config.logging.level,
        },
    }


def save_config(config: CmdPipeConfig, config_path: str) -> None:
    """
    Save configuration to a YAML file.

    Args:
        config: CmdPipeConfig to save
        config_path: Destination file
    """
    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(config_path, 'w') as f:
        f.write("# cmdpipe configuration\n")
        f.write("#\n")
        f.write("# Restart the dispatcher service after making changes.\n\n")
        yaml.dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False)


__all__ = [
    'CmdPipeConfig',
    'ChannelConfig',
    'DispatcherConfig',
    'ServiceConfig',
    'LoggingConfig',
    'load_config',
    'get_config_path',
    'save_config',
    'config_to_dict',
    'update_config_from_dict',
]
