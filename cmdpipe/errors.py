"""Exception types raised by cmdpipe."""


class CmdPipeError(Exception):
    """Base class for cmdpipe errors."""


class ChannelError(CmdPipeError):
    """The command pipe cannot be created, opened or read."""


class ConfigError(CmdPipeError):
    """The configuration file is unreadable or holds invalid values."""
