"""
Tests for accepting connections.
"""

import asyncio
import errno
import logging
import socket

from echoserver import Server
from echoserver.buffers import BufferPool
from echoserver.listener import Listener
from echoserver.server_state import ServerState


def test_failed_accept_keeps_listening(run, config, caplog):
    async def scenario():
        loop = asyncio.get_running_loop()
        real_sock_accept = loop.sock_accept
        failures = [OSError(errno.ECONNABORTED, "Software caused connection abort")]

        async def flaky_sock_accept(sock):
            if failures:
                raise failures.pop()
            return await real_sock_accept(sock)

        loop.sock_accept = flaky_sock_accept

        server = Server(config)
        server.start(0)
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        writer.write(b"still here")
        echoed = await reader.readexactly(10)
        writer.close()
        await writer.wait_closed()
        await server.shutdown()
        return echoed, server

    caplog.set_level(logging.ERROR, logger="echoserver")
    echoed, server = run(scenario())

    assert echoed == b"still here"
    assert server.server_state.total_connections == 1
    assert "Error on accepting client connection: Software caused connection abort." in caplog.messages


def test_unusable_socket_is_closed(run, config, caplog):
    async def scenario():
        state = ServerState()
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listening:
            listener = Listener(listening, config, state, BufferPool(), loop=asyncio.get_running_loop())
            accepted = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            accepted.close()
            conn = listener.connection_accepted(accepted)
        return conn, state

    caplog.set_level(logging.ERROR, logger="echoserver")
    conn, state = run(scenario())

    assert conn is None
    assert not state.connections
    assert state.total_connections == 0
    assert any(m.startswith("Error on reading client stream: ") for m in caplog.messages)


def test_aclose_stops_accept_loop(run, config):
    async def scenario():
        server = Server(config)
        server.start(0)
        listener = server.listener
        await listener.aclose()
        return listener

    listener = run(scenario())

    assert listener.closed
    assert listener.address is None
