"""
Tests for the cmdpipe command log
"""

import os
import re
import sys
from datetime import datetime

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from cmdpipe.command_log import FINISHED, RECEIVED, CommandLog, format_record

LINE_RE = re.compile(r'^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] - Command received: reboot$')


class TestFormatRecord:
    """Test log line formatting."""

    def test_fixed_timestamp(self):
        when = datetime(2024, 3, 5, 7, 8, 9)
        assert format_record(RECEIVED, 'sudo reboot', when) == \
            '[2024-03-05 07:08:09] - Command received: sudo reboot'

    def test_default_timestamp_is_now(self):
        assert LINE_RE.match(format_record(RECEIVED, 'reboot'))


class TestCommandLog:
    """Test the append-only log file."""

    def test_creates_parent_directories(self, tmp_path):
        """Test that logs/system is created on first write."""
        path = tmp_path / 'app' / 'logs' / 'system' / 'commands.log'
        log = CommandLog(str(path))

        log.log_event(RECEIVED, 'echo hi')

        assert path.exists()

    def test_appends(self, tmp_path):
        """Test that events accumulate and are never truncated."""
        path = tmp_path / 'commands.log'
        path.write_text('previous run\n')
        log = CommandLog(str(path))

        log.log_event(RECEIVED, 'echo hi')
        log.log_event(FINISHED, 'echo hi')

        lines = path.read_text().splitlines()
        assert lines[0] == 'previous run'
        assert 'Command received: echo hi' in lines[1]
        assert 'Command finished: echo hi' in lines[2]

    def test_output_stream_appends_bytes(self, tmp_path):
        """Test that command output lands between event lines."""
        log = CommandLog(str(tmp_path / 'commands.log'))

        log.log_event(RECEIVED, 'ls')
        with log.output() as out:
            out.write(b'file.txt\n')
        log.log_event(FINISHED, 'ls')

        lines = log.tail(10)
        assert lines[1] == 'file.txt'
        assert lines[2].endswith('Command finished: ls')

    def test_tail(self, tmp_path):
        path = tmp_path / 'commands.log'
        path.write_text(''.join(f'line {i}\n' for i in range(100)))

        assert CommandLog(str(path)).tail(3) == ['line 97', 'line 98', 'line 99']

    def test_tail_missing_file(self, tmp_path):
        assert CommandLog(str(tmp_path / 'none.log')).tail() == []
