"""
pytest configuration and fixtures.
"""

import asyncio
import os
import socket
import threading
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Generator

import pytest

from filerelay.transfer import Listener, BufferSink, OutputSink


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[[int, str], Path]:
    """Factory writing a file of random bytes; returns its path."""
    def _make(size: int, name: str = 'payload.bin') -> Path:
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path
    return _make


@pytest.fixture
def listener_factory():
    """Factory for a started listener on 127.0.0.1 that drains on exit."""
    @asynccontextmanager
    async def _running(bufsize: int = 4096, sink: OutputSink = None):
        listener = Listener(port=0, host='127.0.0.1', bufsize=bufsize,
                            sink=sink or BufferSink())
        await listener.start()
        try:
            yield listener
        finally:
            await listener.stop()
    return _running


@pytest.fixture
def eventually():
    """Poll an async-context condition until it holds."""
    async def _wait(predicate: Callable[[], bool], timeout: float = 5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)
    return _wait


@pytest.fixture
def refused_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class SinkServer:
    """Blocking one-shot TCP server that records everything it receives."""

    def __init__(self):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(('127.0.0.1', 0))
        self._sock.listen(1)
        self.port = self._sock.getsockname()[1]
        self.received = bytearray()
        self.connections = 0
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self):
        self._thread.start()

    def _serve(self):
        try:
            conn, _ = self._sock.accept()
        except OSError:
            return
        self.connections += 1
        with conn:
            while True:
                data = conn.recv(4096)
                if not data:
                    break
                self.received.extend(data)

    def stop(self):
        try:
            # Wakes a blocked accept() on Linux
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()
        self._thread.join(timeout=5.0)


@pytest.fixture
def sink_server() -> Generator[SinkServer, None, None]:
    """A background server for exercising the client CLI."""
    server = SinkServer()
    server.start()
    yield server
    server.stop()
