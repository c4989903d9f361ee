"""
Tests for cmdpipe systemd service installation

systemctl is never actually called; subprocess.run is patched.
"""

import os
import subprocess
import sys
from unittest.mock import patch

import pytest

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from cmdpipe.config import CmdPipeConfig
from cmdpipe.errors import CmdPipeError
from cmdpipe.service import default_exec_start, install_service, render_unit, service_status


def completed(args, returncode=0, stdout='', stderr=''):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


class TestRenderUnit:
    """Test the generated unit file."""

    def setup_method(self):
        """Setup test fixtures."""
        self.config = CmdPipeConfig()
        self.config.dispatcher.app_dir = '/home/bs/blueacoustic'

    def test_restart_policy(self):
        unit = render_unit(self.config, exec_start='/usr/bin/cmdpipe')
        assert 'Restart=always' in unit
        assert 'RestartSec=10' in unit

    def test_service_account_and_workdir(self):
        unit = render_unit(self.config, exec_start='/usr/bin/cmdpipe')
        assert 'User=bs' in unit
        assert 'WorkingDirectory=/home/bs/blueacoustic' in unit
        assert 'ExecStart=/usr/bin/cmdpipe' in unit
        assert 'WantedBy=multi-user.target' in unit

    def test_default_exec_start_runs_module(self):
        exec_start = default_exec_start('/etc/cmdpipe/config.yaml')
        assert exec_start.startswith(sys.executable)
        assert '-m cmdpipe run --config /etc/cmdpipe/config.yaml' in exec_start

    def test_custom_policy(self):
        self.config.service.restart = 'on-failure'
        self.config.service.restart_sec = 30
        unit = render_unit(self.config, exec_start='/usr/bin/cmdpipe')
        assert 'Restart=on-failure' in unit
        assert 'RestartSec=30' in unit


class TestInstallService:
    """Test unit installation and systemctl calls."""

    def setup_method(self):
        """Setup test fixtures."""
        self.config = CmdPipeConfig()
        self.config.dispatcher.app_dir = '/srv/app'

    def test_writes_unit_and_starts(self, tmp_path):
        self.config.service.unit_dir = str(tmp_path)

        with patch('cmdpipe.service.subprocess.run',
                   side_effect=lambda args, **kw: completed(args)) as run:
            path = install_service(self.config, exec_start='/usr/bin/cmdpipe')

        assert path == str(tmp_path / 'dockerpipe.service')
        assert 'Restart=always' in open(path).read()
        calls = [c.args[0] for c in run.call_args_list]
        assert calls == [
            ['systemctl', 'daemon-reload'],
            ['systemctl', 'enable', 'dockerpipe.service'],
            ['systemctl', 'restart', 'dockerpipe.service'],
        ]

    def test_no_start(self, tmp_path):
        self.config.service.unit_dir = str(tmp_path)

        with patch('cmdpipe.service.subprocess.run',
                   side_effect=lambda args, **kw: completed(args)) as run:
            install_service(self.config, exec_start='/usr/bin/cmdpipe', start=False)

        assert ['systemctl', 'restart', 'dockerpipe.service'] not in \
            [c.args[0] for c in run.call_args_list]

    def test_systemctl_failure(self, tmp_path):
        self.config.service.unit_dir = str(tmp_path)

        with patch('cmdpipe.service.subprocess.run',
                   side_effect=lambda args, **kw: completed(args, 1, stderr='Access denied')):
            with pytest.raises(CmdPipeError, match='Access denied'):
                install_service(self.config, exec_start='/usr/bin/cmdpipe')

    def test_unwritable_unit_dir(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_text('')
        self.config.service.unit_dir = str(blocker / 'systemd')

        with pytest.raises(CmdPipeError):
            install_service(self.config, exec_start='/usr/bin/cmdpipe')


class TestServiceStatus:
    """Test systemctl status reporting."""

    def test_active(self):
        def fake_run(args, **kw):
            return completed(args, stdout='active\n' if args[1] == 'is-active' else 'enabled\n')

        with patch('cmdpipe.service.subprocess.run', side_effect=fake_run):
            assert service_status('dockerpipe') == {'active': 'active', 'enabled': 'enabled'}

    def test_no_systemctl(self):
        with patch('cmdpipe.service.subprocess.run', side_effect=FileNotFoundError('systemctl')):
            assert service_status('dockerpipe') == {'active': 'unknown', 'enabled': 'unknown'}
