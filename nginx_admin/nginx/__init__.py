"""
nginx process integration.

- ExternalCommand / SubprocessCommand: run programs with a timeout
- NginxController: validate, reload, start, stop, restart, status
"""
from .commands import CommandResult, ExternalCommand, SubprocessCommand
from .controller import NginxController

__all__ = [
    'CommandResult',
    'ExternalCommand',
    'SubprocessCommand',
    'NginxController'
]
