import enum
from typing import NamedTuple


Address = tuple[str, int]


class ConnectionState(enum.Enum):
    ACCEPTED = "accepted"
    READING = "reading"
    CLOSING = "closing"
    CLOSED = "closed"


class ReadStatus(enum.Enum):
    """
    Outcome of one read attempt.

    EMPTY and EOF are deliberately different statuses: EMPTY means the socket woke up
    with nothing to read (the connection is still open), EOF means the peer closed its
    send direction.
    """
    DATA = "data"
    EMPTY = "empty"
    EOF = "eof"
    ERROR = "error"


class ReadResult(NamedTuple):
    status: ReadStatus
    nread: int = 0
    error: OSError | None = None
