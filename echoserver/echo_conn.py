"""
One accepted client connection.

The connection is driven by a single task (`run`) that reads until the peer closes or an
error occurs, and by a writer task that sends echoed chunks back in the order they were read.
Reads and writes on one connection overlap: the reader keeps reading while earlier chunks are
still being written.

States:
- ACCEPTED: created by the listener, nothing armed yet.
- READING: read loop and writer task running.
- CLOSING: no more reads. After end-of-stream the pending writes are flushed; after a read
  error they are abandoned.
- CLOSED: the writer finished and the socket is closed. Nothing references the socket anymore.

Buffer ownership:
- every read buffer is either moved into exactly one write or released at the end of the read
  iteration that allocated it (`with buffer:`).
- every write buffer is released by the writer once `sock_sendall` returned or failed, or right
  away if the write could not be submitted at all.
"""
import asyncio
import errno
import logging
import os
import socket

from ._types import ConnectionState, ReadResult, ReadStatus
from .buffers import Buffer, BufferPool
from .config import Config
from .errors import WriteRejected
from .server_state import ServerState
from .util import get_local_addr, get_remote_addr, log_error

logger = logging.getLogger(__name__)

READ_ERROR = "Error on reading client stream"
WRITE_ERROR = "Error on writing client stream"


def _wake(waiter: asyncio.Future) -> None:
    # The reader callback can fire again before the waiting task resumes.
    if not waiter.done():
        waiter.set_result(None)


class EchoConn:

    def __init__(self,
                 sock: socket.socket,
                 config: Config,
                 server_state: ServerState,
                 pool: BufferPool,
                 loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_event_loop()
        self.config = config
        self.sock = sock
        self.pool = pool

        # Per-connection state
        self.state = ConnectionState.ACCEPTED
        self.client: tuple[str, int] | None = None
        self.server: tuple[str, int] | None = None
        self._fd = -1
        self._writes: asyncio.Queue[Buffer | None] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None
        self._read_waiter: asyncio.Future[None] | None = None
        self._stopping = False
        self._aborted = False

        # Shared server state
        self.server_state = server_state
        self.connections = server_state.connections
        self.tasks = server_state.tasks

    def __repr__(self) -> str:
        return f"<EchoConn client={self.client} state={self.state.value}>"

    def connection_made(self) -> asyncio.Task[None]:
        """
        Arm the read loop. Raises OSError if the socket can't be used, in which case nothing
        has been registered and the caller still owns the socket.
        """
        self.sock.setblocking(False)
        self._fd = self.sock.fileno()
        self.client = get_remote_addr(self.sock)
        self.server = get_local_addr(self.sock)

        task = self.loop.create_task(self.run())
        task.add_done_callback(self.tasks.discard)
        self.tasks.add(task)
        self.connections.add(self)
        self.state = ConnectionState.READING
        logger.debug("Connection from %s accepted", self.client)
        return task

    async def run(self) -> None:
        self._writer = self.loop.create_task(self._write_loop())
        self._writer.add_done_callback(self._writer_done)
        try:
            await self._read_loop()
        except asyncio.CancelledError:
            self._aborted = True
            raise
        finally:
            self.state = ConnectionState.CLOSING
            if self._aborted:
                self._writer.cancel()
            else:
                self._writes.put_nowait(None)
            try:
                await asyncio.wait([self._writer])
            except asyncio.CancelledError:
                # cancelled while flushing: abandon the rest, the socket outlives the writer
                self._writer.cancel()
                await asyncio.wait([self._writer])
                raise
            finally:
                self._release()
                if self._writer.done() and not self._writer.cancelled():
                    exc = self._writer.exception()
                    if exc is not None:
                        logger.error("Exception in connection writer: %s", exc, exc_info=exc)

    def _writer_done(self, task: asyncio.Task[None]) -> None:
        # A writer that died on something other than an OSError stops the reader too.
        if not task.cancelled() and task.exception() is not None:
            self.shutdown()

    async def _read_loop(self) -> None:
        while not self._stopping:
            # Idle connections hold no memory: allocate only once there is something to read.
            await self._wait_readable()
            if self._stopping:
                return
            buffer = self.pool.allocate(self.config.read_size)
            with buffer:
                result = self._read_into(buffer)
                if result.status is ReadStatus.DATA:
                    self._echo(buffer.move(result.nread))
                elif result.status is ReadStatus.EOF:
                    logger.debug("Connection from %s reached end of stream", self.client)
                    return
                elif result.status is ReadStatus.ERROR:
                    log_error(logger, READ_ERROR, result.error)
                    self._aborted = True
                    return
                # ReadStatus.EMPTY: still open, nothing to echo

    def _read_into(self, buffer: Buffer) -> ReadResult:
        if not buffer:
            # Reading into an empty buffer would look like end-of-stream.
            return ReadResult(ReadStatus.ERROR, error=OSError(errno.ENOBUFS, os.strerror(errno.ENOBUFS)))

        try:
            nread = self.sock.recv_into(buffer.view)
        except (BlockingIOError, InterruptedError):
            return ReadResult(ReadStatus.EMPTY)
        except OSError as exc:
            return ReadResult(ReadStatus.ERROR, error=exc)
        if nread == 0:
            return ReadResult(ReadStatus.EOF)
        return ReadResult(ReadStatus.DATA, nread)

    async def _wait_readable(self) -> None:
        waiter = self.loop.create_future()
        self._read_waiter = waiter
        self.loop.add_reader(self._fd, _wake, waiter)
        try:
            await waiter
        finally:
            self.loop.remove_reader(self._fd)
            self._read_waiter = None

    def _echo(self, buffer: Buffer) -> None:
        try:
            self.submit_write(buffer)
        except (WriteRejected, OSError) as exc:
            # A rejected write never completes, so nobody else will release it.
            buffer.release()
            log_error(logger, WRITE_ERROR, exc)

    def submit_write(self, buffer: Buffer) -> None:
        """Queue `buffer` for writing. On success the writer owns it."""
        if self.state is not ConnectionState.READING or self._writer is None or self._writer.done():
            raise WriteRejected("Connection is closing")
        self._writes.put_nowait(buffer)

    async def _write_loop(self) -> None:
        try:
            while True:
                buffer = await self._writes.get()
                if buffer is None:
                    return
                with buffer:
                    try:
                        await self.loop.sock_sendall(self.sock, buffer.payload)
                    except OSError as exc:
                        log_error(logger, WRITE_ERROR, exc)
        finally:
            # abandoned writes still own their buffers
            while not self._writes.empty():
                pending = self._writes.get_nowait()
                if pending is not None:
                    pending.release()

    def _release(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.sock.close()
        self.state = ConnectionState.CLOSED
        self.connections.discard(self)
        logger.debug("Connection from %s closed", self.client)

    def shutdown(self) -> None:
        """
        Called by the server to commence a graceful shutdown. Reading stops as if the peer had
        closed; chunks already read are still echoed before the socket is closed.
        """
        self._stopping = True
        if self._read_waiter is not None and not self._read_waiter.done():
            self._read_waiter.set_result(None)
