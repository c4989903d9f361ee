"""
cmdpipe Named Pipe Channel

The container and the host share a FIFO at a fixed path. The container
opens it for writing, writes one command line and closes it; the host
dispatcher reads it.

How the byte stream is split into messages is decided here, not in the
dispatcher:
  close  one message per writer session, ended when every writer has
         closed the pipe (what the original shell listener did)
  line   one message per newline-terminated line; survives several
         commands arriving in a single write

Under close framing two writers that hold the pipe open at the same time
get their bytes concatenated into one message. Line framing avoids that
as long as each writer emits whole lines in a single write() of at most
PIPE_BUF bytes.
"""

import errno
import logging
import os
import stat
from typing import Iterator, Optional

from cmdpipe.config import ChannelConfig
from cmdpipe.errors import ChannelError, ConfigError

logger = logging.getLogger(__name__)


def ensure_channel(path: str, mode: int = 0o666) -> None:
    """
    Make sure a FIFO exists at path.

    Creates missing parent directories and the FIFO itself. An existing FIFO
    is left in place, so calling this repeatedly is safe. Anything else at
    path is never removed.

    Raises:
        ChannelError: path holds a non-FIFO file, or the FIFO cannot be
            created or given the requested permissions
    """
    parent = os.path.dirname(path)
    if parent:
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise ChannelError(f'Cannot create channel directory {parent}: {e}') from e

    try:
        os.mkfifo(path)
        logger.info('Named pipe created at %s', path)
    except FileExistsError:
        pass
    except OSError as e:
        raise ChannelError(f'Cannot create named pipe {path}: {e}') from e

    try:
        st = os.stat(path)
    except OSError as e:
        raise ChannelError(f'Cannot stat channel {path}: {e}') from e

    if not stat.S_ISFIFO(st.st_mode):
        raise ChannelError(f'{path} exists and is not a named pipe; refusing to replace it')

    # mkfifo honours the umask, so set the mode explicitly. Skip when it
    # already matches: the pipe may belong to root while we run as the
    # service account.
    if stat.S_IMODE(st.st_mode) != mode:
        try:
            os.chmod(path, mode)
        except OSError as e:
            raise ChannelError(f'Cannot set mode {mode:04o} on {path}: {e}') from e
        logger.info('Set mode %04o on %s', mode, path)


def require_fifo(path: str) -> None:
    """Raise ChannelError unless path is an existing FIFO."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        raise ChannelError(f'Named pipe {path} does not exist') from None
    except OSError as e:
        raise ChannelError(f'Cannot stat channel {path}: {e}') from e
    if not stat.S_ISFIFO(st.st_mode):
        raise ChannelError(f'{path} is not a named pipe')


class MessageSource:
    """
    Lazy, unbounded sequence of command strings.

    Iterating a source blocks until the next message arrives. Iteration never
    ends on its own; read failures raise ChannelError.
    """

    framing = ''

    def __init__(self, path: str, encoding: str = 'utf-8'):
        self.path = path
        self.encoding = encoding
        self._messages: Optional[Iterator[str]] = None

    def _decode(self, data: bytes) -> str:
        # Matches shell $(cat pipe): trailing newlines are not part of the command
        return data.decode(self.encoding, errors='replace').rstrip('\r\n')

    def receive(self) -> str:
        """Block until the next message arrives and return it."""
        if self._messages is None:
            self._messages = iter(self)
        return next(self._messages)

    def __iter__(self) -> Iterator[str]:
        raise NotImplementedError

    def __repr__(self):
        return f'{type(self).__name__}({self.path!r})'


class CloseFramedChannel(MessageSource):
    """One message per writer session; end of message is the writer's close."""

    framing = 'close'

    def receive(self) -> str:
        require_fifo(self.path)
        try:
            # open() blocks until a writer shows up, read() until all writers close
            with open(self.path, 'rb') as pipe:
                data = pipe.read()
        except OSError as e:
            raise ChannelError(f'Failed to read from {self.path}: {e}') from e
        return self._decode(data)

    def __iter__(self) -> Iterator[str]:
        while True:
            yield self.receive()


class LineFramedChannel(MessageSource):
    """One message per line; the pipe is reopened when all writers close."""

    framing = 'line'

    def __iter__(self) -> Iterator[str]:
        while True:
            require_fifo(self.path)
            try:
                with open(self.path, 'rb') as pipe:
                    for raw in pipe:
                        yield self._decode(raw)
            except OSError as e:
                raise ChannelError(f'Failed to read from {self.path}: {e}') from e


def open_channel(config: ChannelConfig) -> MessageSource:
    """Build the message source selected by config.framing."""
    if config.framing == 'close':
        return CloseFramedChannel(config.path, config.encoding)
    if config.framing == 'line':
        return LineFramedChannel(config.path, config.encoding)
    raise ConfigError(f'Unknown framing {config.framing!r}')


def send_command(path: str, command: str, encoding: str = 'utf-8', wait: bool = True) -> None:
    """
    Write one command to the pipe and close it.

    This is the consumer side of the contract; the containerized application
    does the same thing with a shell redirect.

    Args:
        path: Channel path
        command: Shell command line
        encoding: Text encoding for the command
        wait: Block until a dispatcher opens the pipe. When False and nobody
            is reading, ChannelError is raised instead.
    """
    require_fifo(path)

    data = command.encode(encoding)
    if not data.endswith(b'\n'):
        data += b'\n'

    flags = os.O_WRONLY
    if not wait:
        flags |= os.O_NONBLOCK

    try:
        fd = os.open(path, flags)
    except OSError as e:
        if not wait and e.errno == errno.ENXIO:
            raise ChannelError(f'No dispatcher is reading {path}') from e
        raise ChannelError(f'Cannot open {path} for writing: {e}') from e

    try:
        os.set_blocking(fd, True)
        view = memoryview(data)
        while view:
            written = os.write(fd, view)
            view = view[written:]
    except OSError as e:
        raise ChannelError(f'Failed to write to {path}: {e}') from e
    finally:
        os.close(fd)
