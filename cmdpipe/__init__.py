"""
cmdpipe - Host Command Pipe Dispatcher

Runs on Raspberry Pi field nodes and gateways. A containerized application
writes shell command lines into a named pipe; this package reads them on the
host, runs them in a shell and keeps an audit trail of what was executed.
"""

__version__ = '1.0.0'
__author__ = 'cmdpipe maintainers'

from cmdpipe.dispatcher import Dispatcher, DispatcherState

__all__ = [
    'Dispatcher',
    'DispatcherState',
    '__version__',
]
