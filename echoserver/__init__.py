from .api import get_default_server, start
from .buffers import Buffer, BufferPool
from .config import Config
from .errors import (
    AddressParseFailed,
    AlreadyStarted,
    BindFailed,
    EchoServerError,
    InvalidArgument,
    ListenFailed,
    StartFailed,
    WriteRejected,
)
from .server import Server

__version__ = "0.1.0"

__all__ = [
    "AddressParseFailed",
    "AlreadyStarted",
    "BindFailed",
    "Buffer",
    "BufferPool",
    "Config",
    "EchoServerError",
    "InvalidArgument",
    "ListenFailed",
    "Server",
    "StartFailed",
    "WriteRejected",
    "get_default_server",
    "start",
]
