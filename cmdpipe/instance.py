"""
cmdpipe Instance Lock

Only one dispatcher may read the pipe. The running dispatcher records its
PID in a file; a second instance refuses to start while that PID belongs
to a live cmdpipe process. A file left behind by a crash is stale and is
simply replaced, so a supervisor restart never needs manual cleanup.
"""

import logging
import os
from typing import Optional

import psutil

from cmdpipe.errors import ChannelError

logger = logging.getLogger(__name__)

PROCESS_MARKER = 'cmdpipe'


def _is_dispatcher(pid: int) -> bool:
    """Check whether pid is a live process that looks like a dispatcher."""
    if pid == os.getpid() or not psutil.pid_exists(pid):
        return False
    try:
        proc = psutil.Process(pid)
        if proc.status() == psutil.STATUS_ZOMBIE:
            return False
        cmdline = ' '.join(proc.cmdline())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False
    return PROCESS_MARKER in cmdline


class InstanceLock:
    """PID file guarding the single-reader rule."""

    def __init__(self, path: str):
        self.path = path
        self._held = False

    def read_pid(self) -> Optional[int]:
        """PID stored in the lock file, or None."""
        try:
            with open(self.path, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def owner(self) -> Optional[int]:
        """PID of the live dispatcher holding the lock, or None."""
        pid = self.read_pid()
        if pid is not None and _is_dispatcher(pid):
            return pid
        return None

    def acquire(self):
        owner = self.owner()
        if owner is not None:
            raise ChannelError(f'Another dispatcher (PID {owner}) is already reading the pipe')

        stale = self.read_pid()
        if stale is not None and stale != os.getpid():
            logger.info('Replacing stale pid file %s (PID %d)', self.path, stale)

        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, 'w') as f:
                f.write(f'{os.getpid()}\n')
        except OSError as e:
            raise ChannelError(f'Cannot write pid file {self.path}: {e}') from e
        self._held = True

    def release(self):
        if not self._held:
            return
        self._held = False
        if self.read_pid() != os.getpid():
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
