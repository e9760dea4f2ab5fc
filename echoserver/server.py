from types import FrameType
from typing import Generator
import asyncio
import ipaddress
import os
import signal
import socket
import sys
import logging
import contextlib
import threading
import click
from .buffers import BufferPool
from .config import Config
from .errors import (
    AddressParseFailed,
    AlreadyStarted,
    BindFailed,
    InvalidArgument,
    ListenFailed,
    StartFailed,
)
from .listener import Listener
from .server_state import ServerState
from .util import log_error


HANDLED_SIGNALS = {
    signal.SIGINT: "SIGINT",
    signal.SIGTERM: "SIGTERM",
}
if sys.platform == "win32":
    HANDLED_SIGNALS[signal.SIGBREAK] = "SIGBREAK"


logger = logging.getLogger(__name__)


def validate_port(port) -> int:
    if isinstance(port, (bool, str, bytes)):
        raise InvalidArgument("Wrong arguments")
    try:
        port = int(port)  # Truncated
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidArgument("Wrong arguments") from exc
    if not 0 <= port <= 65535:
        raise InvalidArgument("Wrong arguments")
    return port


class Server:
    def __init__(self, config: Config | None = None):
        self.config = config or Config()
        self.server_state = ServerState()
        self.pool = BufferPool(chunk_size=self.config.read_size, limit=self.config.max_buffered_bytes)
        self.started = False
        self.should_exit = False
        self.force_exit = False
        self._captured_signals: list[int] = []
        self.listener: Listener | None = None

        # Set while serve() runs, so exit requests can wake it up.
        self._loop: asyncio.AbstractEventLoop | None = None
        self._exit_requested: asyncio.Event | None = None
        self._force_requested: asyncio.Event | None = None

    @property
    def port(self) -> int | None:
        if self.listener is None:
            return None
        address = self.listener.address
        return address[1] if address else None

    def start(self, port) -> None:
        """
        Bind and listen on `config.host:port` and start accepting connections.

        Must be called from within a running event loop. Raises AlreadyStarted, InvalidArgument
        or a StartFailed subclass; in every error case no socket is left open and the server
        stays un-started.
        """
        if self.started:
            raise AlreadyStarted("Already started")
        port = validate_port(port)
        loop = asyncio.get_running_loop()

        try:
            address = ipaddress.IPv4Address(self.config.host)
        except ValueError as exc:
            log_error(logger, "Error on parsing address", exc)
            raise AddressParseFailed("Failed to start") from exc

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            log_error(logger, "Error on creating socket", exc)
            raise StartFailed("Failed to start") from exc

        try:
            if os.name == "posix":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setblocking(False)
            sock.bind((str(address), port))
        except OSError as exc:
            sock.close()
            log_error(logger, "Error on binding", exc)
            raise BindFailed("Failed to start") from exc

        try:
            if self.config.backlog is None:
                sock.listen()
            else:
                sock.listen(self.config.backlog)
        except OSError as exc:
            sock.close()
            log_error(logger, "Error on listening", exc)
            raise ListenFailed("Failed to start") from exc

        self.listener = Listener(sock, self.config, self.server_state, self.pool, loop=loop)
        self.listener.start()
        self.started = True
        self._log_startup_message(self.listener)

    def _log_startup_message(self, listener: Listener) -> None:
        addr_format = "%s:%d"
        host, port = listener.address or (self.config.host, 0)

        message = f"Echo server running on {addr_format} (Press CTRL+C to quit)"
        color_message = "Echo server running on " + click.style(addr_format, bold=True) + " (Press CTRL+C to quit)"
        logger.info(
            message,
            host,
            port,
            extra={"color_message": color_message},
        )

    def run(self) -> None:
        asyncio.run(self.serve())

    async def serve(self) -> None:
        """
        Start on `config.port`, echo until an exit is requested, then shut down gracefully.
        """
        self._exit_requested = asyncio.Event()
        self._force_requested = asyncio.Event()
        self._loop = asyncio.get_running_loop()
        try:
            with self.signals_handled():
                logger.info("Starting server...")
                await self.startup()
                if not self.should_exit:
                    await self._exit_requested.wait()
                await self.shutdown()
                logger.info("Server shutdown complete!")
        finally:
            self._loop = None
            self._exit_requested = self._force_requested = None

    async def startup(self) -> None:
        try:
            self.start(self.config.port)
        except InvalidArgument as exc:
            logger.error("Invalid port %r: %s.", self.config.port, exc)
            sys.exit(1)
        except StartFailed:
            # the reason has been logged already
            sys.exit(1)

    def request_exit(self, force: bool = False) -> None:
        """
        Ask `serve` to shut down. Safe to call from a signal handler or another thread.
        A forced exit stops waiting for connections and cancels them.
        """
        self.should_exit = True
        events = [self._exit_requested]
        if force:
            self.force_exit = True
            events.append(self._force_requested)
        loop = self._loop
        if loop is not None:
            for event in events:
                loop.call_soon_threadsafe(event.set)

    async def shutdown(self) -> None:
        logger.info("Shutting down server...")
        if self.listener is not None:
            await self.listener.aclose()

        # Reading stops; each connection flushes what it already read and closes.
        for connection in list(self.server_state.connections):
            connection.shutdown()

        try:
            await asyncio.wait_for(self._connections_closed(), timeout=self.config.timeout_graceful_shutdown)
        except asyncio.TimeoutError:
            logger.warning("Graceful shutdown timed out. Forcing exit.")

        remaining = [task for task in self.server_state.tasks if not task.done()]
        for task in remaining:
            task.cancel(msg="Cancelled during forced shutdown")
        if remaining:
            await asyncio.wait(remaining)

        self.listener = None
        self.started = False

    async def _connections_closed(self) -> None:
        """Wait for every connection task to finish, or for a forced exit."""
        pending = {task for task in self.server_state.tasks if not task.done()}
        if not pending or self.force_exit:
            return
        logger.info("Waiting for %d connection(s) to close. (CTRL+C to force quit)", len(pending))

        forced = None
        if self._force_requested is not None:
            forced = asyncio.ensure_future(self._force_requested.wait())
        try:
            while pending:
                waiting = pending if forced is None else pending | {forced}
                await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if forced is not None and forced.done():
                    return
                pending = {task for task in self.server_state.tasks if not task.done()}
        finally:
            if forced is not None:
                forced.cancel()

    @contextlib.contextmanager
    def signals_handled(self) -> Generator[None, None, None]:
        # Handlers can only be installed from the main thread.
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {sig: signal.signal(sig, self.handle_exit) for sig in HANDLED_SIGNALS}
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            # hand what we swallowed to the previous handlers, latest first
            captured, self._captured_signals = self._captured_signals, []
            for sig in reversed(captured):
                signal.raise_signal(sig)

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        self._captured_signals.append(sig)
        self.request_exit(force=self.should_exit and sig == signal.SIGINT)
