"""
Module level entry point backed by one process-wide server.
"""
from .config import Config
from .errors import AlreadyStarted, InvalidArgument
from .server import Server

_default_server: Server | None = None


def get_default_server() -> Server:
    global _default_server
    if _default_server is None:
        _default_server = Server(Config())
    return _default_server


def start(*args) -> None:
    """
    Start echoing on 127.0.0.1:<port>. Call from inside a running event loop.

    The server stays up for the lifetime of the process; a second call raises AlreadyStarted
    whatever its arguments are.
    """
    server = get_default_server()
    if server.started:
        raise AlreadyStarted("Already started")
    if len(args) != 1:
        raise InvalidArgument("Wrong number of arguments")
    server.start(args[0])
