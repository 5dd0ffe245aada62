"""Remote control channel for the desktop companion."""

from .controller import RemoteController
from .protocol import CommandType, RemoteCommand, RemoteResponse, validate_command
from .server import RemoteControlServer

__all__ = [
    "CommandType",
    "RemoteCommand",
    "RemoteController",
    "RemoteControlServer",
    "RemoteResponse",
    "validate_command",
]
