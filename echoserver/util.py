import logging
import os
import socket

from ._types import Address


def get_local_addr(sock: socket.socket) -> Address | None:
    try:
        info = sock.getsockname()   # (ip_address_str, port_int)
    except OSError:
        return None
    if isinstance(info, tuple) and len(info) >= 2:
        return (str(info[0]), int(info[1]))
    return None


def get_remote_addr(sock: socket.socket) -> Address | None:
    try:
        info = sock.getpeername()
    except OSError:
        # peer already gone
        return None
    if isinstance(info, tuple) and len(info) >= 2:
        return (str(info[0]), int(info[1]))
    return None


def describe(exc: BaseException) -> str:
    """Human readable reason for an error, without the trailing errno noise."""
    if isinstance(exc, OSError):
        if exc.strerror:
            return exc.strerror
        if exc.errno:
            return os.strerror(exc.errno)
    return str(exc) or exc.__class__.__name__


def log_error(logger: logging.Logger, prefix: str, exc: BaseException) -> None:
    logger.error("%s: %s.", prefix, describe(exc))
