"""
cmdpipe Dispatcher

Receive -> log -> execute -> log, forever. The loop is single threaded:
while a command runs nothing else is read from the pipe, and a command that
never returns stalls the dispatcher until it is restarted.

Keeping the loop alive is the supervisor's job (see cmdpipe.service); any
exception from the message source ends run().
"""

import logging
from enum import Enum
from typing import Iterable, Optional

from cmdpipe.command_log import FINISHED, RECEIVED, CommandLog
from cmdpipe.executor import CommandExecutor

logger = logging.getLogger(__name__)


class DispatcherState(Enum):
    """Dispatcher loop states."""
    IDLE = "IDLE"
    EXECUTING = "EXECUTING"


class Dispatcher:
    """
    Runs commands received from a message source.

    Args:
        source: Iterable of command strings, usually a channel from
            cmdpipe.channel.open_channel()
        executor: Privilege boundary that actually runs commands
        command_log: Audit log receiving events and command output
    """

    def __init__(self, source: Iterable[str], executor: CommandExecutor,
                 command_log: CommandLog):
        self._source = source
        self._executor = executor
        self._command_log = command_log
        self._state = DispatcherState.IDLE
        self._handled = 0

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def handled(self) -> int:
        """Number of messages processed since start."""
        return self._handled

    def dispatch(self, command: str) -> int:
        """Execute command, appending its output to the command log."""
        with self._command_log.output() as output:
            return self._executor.execute(command, output)

    def handle(self, command: str) -> Optional[int]:
        """
        Process one received message.

        Returns:
            Exit status, or None when the message was empty and nothing ran
        """
        self._state = DispatcherState.EXECUTING
        status = None
        try:
            # Stamped here, after the read returned and before execution
            self._command_log.log_event(RECEIVED, command)

            if command.strip():
                logger.info('Executing: %s', command)
                status = self.dispatch(command)
                logger.debug('Finished with status %d: %s', status, command)
            else:
                logger.debug('Empty message, nothing to execute')

            self._command_log.log_event(FINISHED, command)
        finally:
            self._handled += 1
            self._state = DispatcherState.IDLE
        return status

    def run(self, limit: Optional[int] = None):
        """
        Process messages until the source fails.

        Args:
            limit: Stop after this many messages (default: never)
        """
        if limit is not None and limit <= 0:
            return

        logger.info('Dispatcher waiting for commands on %r', self._source)
        processed = 0
        for command in self._source:
            self.handle(command)
            processed += 1
            if limit is not None and processed >= limit:
                break
