import asyncio
import errno
import logging
import socket

from .buffers import BufferPool
from .config import Config
from .echo_conn import READ_ERROR, EchoConn
from .server_state import ServerState
from .util import get_local_addr, log_error

logger = logging.getLogger(__name__)

# Same pause asyncio applies when accept() runs out of file descriptors.
ACCEPT_RETRY_DELAY = 1

# accept() failures that concern the pending connection or resources, not the listener
RESOURCE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})
ACCEPT_ERRNOS = RESOURCE_ERRNOS | frozenset({
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.EPERM,
    errno.EPROTO,
    errno.EINTR,
    errno.EAGAIN,
})


class Listener:
    """
    Owns the bound, listening socket and turns every accepted socket into an EchoConn.
    """

    def __init__(self,
                 sock: socket.socket,
                 config: Config,
                 server_state: ServerState,
                 pool: BufferPool,
                 loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_event_loop()
        self.sock = sock
        self.config = config
        self.server_state = server_state
        self.pool = pool
        self._task: asyncio.Task[None] | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        return get_local_addr(self.sock)

    @property
    def closed(self) -> bool:
        return self.sock.fileno() == -1

    def start(self) -> asyncio.Task[None]:
        self._task = self.loop.create_task(self.accept_loop())
        self._task.add_done_callback(self.server_state.tasks.discard)
        self.server_state.tasks.add(self._task)
        return self._task

    async def accept_loop(self) -> None:
        while not self.closed:
            try:
                conn_sock, _ = await self.loop.sock_accept(self.sock)
            except OSError as exc:
                if self.closed:
                    return
                if exc.errno in ACCEPT_ERRNOS:
                    log_error(logger, "Error on accepting client connection", exc)
                else:
                    log_error(logger, "Error on listening", exc)
                if exc.errno not in ACCEPT_ERRNOS or exc.errno in RESOURCE_ERRNOS:
                    await asyncio.sleep(ACCEPT_RETRY_DELAY)
                continue
            self.connection_accepted(conn_sock)

    def connection_accepted(self, conn_sock: socket.socket) -> EchoConn | None:
        conn = EchoConn(conn_sock, self.config, self.server_state, self.pool, loop=self.loop)
        try:
            conn.connection_made()
        except OSError as exc:
            conn_sock.close()
            log_error(logger, READ_ERROR, exc)
            return None
        self.server_state.total_connections += 1
        return conn

    async def aclose(self) -> None:
        """Stop accepting. The socket is closed once the accept loop has let go of it."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait([self._task])
        self.sock.close()
