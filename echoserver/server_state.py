from typing import TYPE_CHECKING
import asyncio
if TYPE_CHECKING:
    from .echo_conn import EchoConn

class ServerState:
    """
    Shared server state that is available to every connection of one server.
    """
    def __init__(self):
        # Live connections, each added on accept and discarded once its socket is closed.
        self.connections: set[EchoConn] = set()
        # One task per connection (plus the accept loop) so shutdown can wait on them.
        self.tasks: set[asyncio.Task[None]] = set()
        self.total_connections = 0
