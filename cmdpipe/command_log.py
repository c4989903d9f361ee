"""
cmdpipe Command Log

Append-only audit trail of every command received on the pipe. Each event
is one line:

    [2024-05-01 12:00:00] - Command received: sudo reboot

and the command's own stdout/stderr is appended right after it. The file
is never rotated or truncated.
"""

import os
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import BinaryIO, Iterator, List, Optional

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

RECEIVED = 'Command received'
FINISHED = 'Command finished'


def format_record(marker: str, detail: str, when: Optional[datetime] = None) -> str:
    """Format a log line (without trailing newline)."""
    when = when or datetime.now()
    return f'[{when.strftime(TIMESTAMP_FORMAT)}] - {marker}: {detail}'


class CommandLog:
    """Writes command events and output to a single log file."""

    def __init__(self, path: str):
        self.path = path

    def _ensure_dir(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    @contextmanager
    def output(self) -> Iterator[BinaryIO]:
        """Open the log for binary append; child processes may write to it."""
        self._ensure_dir()
        with open(self.path, 'ab') as f:
            yield f

    def log_event(self, marker: str, detail: str, when: Optional[datetime] = None) -> str:
        """
        Append one timestamped event line.

        Args:
            marker: Event name, e.g. "Command received"
            detail: Free text, usually the command line
            when: Timestamp override (default: now, local time)

        Returns:
            The line written
        """
        line = format_record(marker, detail, when)
        with self.output() as f:
            f.write(line.encode('utf-8', errors='replace') + b'\n')
        return line

    def tail(self, lines: int = 50) -> List[str]:
        """Return the last lines of the log (empty if it does not exist)."""
        if lines <= 0 or not os.path.exists(self.path):
            return []
        with open(self.path, 'r', encoding='utf-8', errors='replace') as f:
            return [line.rstrip('\n') for line in deque(f, maxlen=lines)]
