"""IPC server and protocol module."""

from .protocol import (
    Command,
    CommandType,
    DataResponse,
    DebugDumpResponse,
    ResponseStatus,
    SimpleResponse,
    StatusResponse,
)
from .server import IPCServer

__all__ = [
    "Command",
    "CommandType",
    "DataResponse",
    "DebugDumpResponse",
    "IPCServer",
    "ResponseStatus",
    "SimpleResponse",
    "StatusResponse",
]
