"""
pytest configuration and fixtures.
"""

import asyncio
import socket
import time
from typing import Awaitable, Callable, TypeVar

import pytest

# Add the repository root to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from echoserver import Config
from echoserver import api


T = TypeVar("T")


@pytest.fixture
def config() -> Config:
    """Default test server configuration."""
    return Config(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        read_size=4096,
        timeout_graceful_shutdown=5.0,
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def run() -> Callable[[Awaitable[T]], T]:
    """Run a scenario coroutine on a fresh event loop, failing it after 10 seconds."""
    def _run(coro: Awaitable[T]) -> T:
        async def _with_timeout():
            return await asyncio.wait_for(coro, timeout=10)
        return asyncio.run(_with_timeout())
    return _run


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate from inside the event loop."""
    async def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return _wait_until


@pytest.fixture
def default_server(monkeypatch):
    """Give the module level start() a fresh process-wide server."""
    monkeypatch.setattr(api, "_default_server", None)
    yield
    server = api._default_server
    if server is not None and server.listener is not None:
        server.listener.sock.close()
