"""
cmdpipe Command Executors

The executor is the privilege boundary of the dispatcher. Whatever arrives
on the pipe is handed to execute(); ShellExecutor runs it with full shell
semantics and the dispatcher's own privileges. Anyone who can write to the
pipe can therefore run any command on the host. That is the purpose of the
bridge (reboots, /boot/config.txt edits, service restarts requested by the
container), so any hardening belongs in an executor wrapper such as
PolicyExecutor rather than in the loop.
"""

import logging
import re
import subprocess
from typing import BinaryIO, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Exit status used when a command is refused or cannot be started,
# same values the shell reports
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127


class CommandExecutor:
    """Runs one command line, writing its combined output to a stream."""

    def execute(self, command: str, output: BinaryIO) -> int:
        """
        Run command and return its exit status.

        Args:
            command: Shell command line
            output: Binary stream receiving stdout and stderr

        Returns:
            Exit status of the command
        """
        raise NotImplementedError


class ShellExecutor(CommandExecutor):
    """Runs commands through a host shell, like eval in the original listener."""

    def __init__(self, shell: str = '/bin/bash', cwd: Optional[str] = None):
        self.shell = shell
        self.cwd = cwd

    def execute(self, command: str, output: BinaryIO) -> int:
        output.flush()
        try:
            result = subprocess.run(
                command,
                shell=True,
                executable=self.shell,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.STDOUT,
                cwd=self.cwd,
            )
        except OSError as e:
            # The shell itself could not be started
            logger.error('Failed to start %s: %s', self.shell, e)
            output.write(f'cmdpipe: cannot run {self.shell}: {e}\n'.encode())
            output.flush()
            return EXIT_NOT_FOUND

        if result.returncode != 0:
            logger.warning('Command exited with status %d: %s', result.returncode, command)
        return result.returncode


class PolicyExecutor(CommandExecutor):
    """
    Refuses commands matching any blocked pattern, runs the rest.

    Patterns are regular expressions searched anywhere in the command line.
    This is a coarse filter for obvious mistakes, not a sandbox: shell
    quoting and variable expansion can get around it.
    """

    def __init__(self, inner: CommandExecutor, blocked_patterns: Iterable[str]):
        self.inner = inner
        self._patterns: List[re.Pattern] = [re.compile(p) for p in blocked_patterns]

    @property
    def patterns(self) -> List[str]:
        return [p.pattern for p in self._patterns]

    def check(self, command: str) -> Optional[str]:
        """Return the first pattern that blocks command, or None."""
        for pattern in self._patterns:
            if pattern.search(command):
                return pattern.pattern
        return None

    def execute(self, command: str, output: BinaryIO) -> int:
        blocked_by = self.check(command)
        if blocked_by is not None:
            logger.warning('Refused command %r (matches %r)', command, blocked_by)
            output.write(f'cmdpipe: command refused by policy (matches {blocked_by!r})\n'.encode())
            output.flush()
            return EXIT_NOT_EXECUTABLE
        return self.inner.execute(command, output)


def build_executor(shell: str = '/bin/bash', blocked_patterns: Iterable[str] = (),
                   cwd: Optional[str] = None) -> CommandExecutor:
    """Build the executor for a dispatcher configuration."""
    executor: CommandExecutor = ShellExecutor(shell=shell, cwd=cwd)
    patterns = list(blocked_patterns)
    if patterns:
        executor = PolicyExecutor(executor, patterns)
    return executor
