"""
Connections and Endpoints

Design Decision: Socket Access Layer
====================================

Options Considered:
1. asyncio streams (StreamReader/StreamWriter)
   - Convenient, but buffer internally
   - Short writes and read sizes are hidden from the caller

2. asyncio.Protocol / Transport
   - Callback driven, pushes data at its own pace

3. Non-blocking sockets driven by the event loop (loop.sock_*)
   - Caller picks the read size (the configured receive buffer)
   - send() reports exactly how many bytes the kernel accepted

Decision: Non-blocking sockets with loop.sock_* helpers
- The worker reads straight into its own fixed-size buffer
- The connector sees short writes and retries the unsent suffix
- One owner per socket, closed exactly once

Every Connection is owned by whoever created or accepted it. close() is
idempotent, so owners can call it on every exit path without tracking
whether an earlier path already did.
"""

import asyncio
import socket
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, List, Any

from ..errors import BindError

logger = logging.getLogger(__name__)


def format_address(address: Any) -> str:
    """Render a socket address as host:port ([host]:port for IPv6)."""
    if isinstance(address, tuple) and len(address) >= 2:
        host, port = address[0], address[1]
        if ':' in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(address)


@dataclass(frozen=True)
class Endpoint:
    """A resolved network address usable to connect or bind."""
    family: int
    type: int
    proto: int
    address: Tuple

    @classmethod
    def from_addrinfo(cls, info: tuple) -> 'Endpoint':
        """Build an endpoint from one getaddrinfo() result row."""
        family, sock_type, proto, _canonname, address = info
        return cls(family=family, type=sock_type, proto=proto, address=address)

    def create_socket(self) -> socket.socket:
        """Create an unconnected socket matching this endpoint."""
        return socket.socket(self.family, self.type, self.proto)

    def __str__(self) -> str:
        return format_address(self.address)


class Connection:
    """
    A bidirectional byte stream bound to one peer.

    Wraps a connected socket and switches it to non-blocking mode so the
    event loop can drive it.
    """

    def __init__(self, sock: socket.socket, peer: Any = None):
        sock.setblocking(False)
        self.sock = sock
        self.peer = peer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def peer_name(self) -> str:
        return format_address(self.peer)

    async def send(self, data) -> int:
        """
        Offer bytes to the kernel once.

        Returns:
            Number of bytes accepted, which may be fewer than offered
        """
        if self._closed:
            raise ConnectionError("Connection closed")

        while True:
            try:
                return self.sock.send(data)
            except InterruptedError:
                continue
            except BlockingIOError:
                await self._wait_writable()

    async def recv_into(self, buffer) -> int:
        """
        Read whatever is available into buffer.

        Returns:
            Number of bytes read; 0 once the peer has closed
        """
        if self._closed:
            raise ConnectionError("Connection closed")

        loop = asyncio.get_running_loop()
        return await loop.sock_recv_into(self.sock, buffer)

    async def _wait_writable(self):
        """Suspend until the socket can accept more data."""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        fd = self.sock.fileno()

        def _ready():
            if not waiter.done():
                waiter.set_result(None)

        loop.add_writer(fd, _ready)
        try:
            await waiter
        finally:
            loop.remove_writer(fd)

    def close(self):
        """Close the connection (safe to call more than once)."""
        if not self._closed:
            self._closed = True
            self.sock.close()

    async def __aenter__(self) -> 'Connection':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        state = 'closed' if self._closed else 'open'
        return f"<Connection peer={self.peer_name} {state}>"


async def resolve_passive(port: int, host: Optional[str] = None) -> List[Endpoint]:
    """Resolve local bind candidates (wildcard when host is None)."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(
        host, port,
        family=socket.AF_UNSPEC,
        type=socket.SOCK_STREAM,
        flags=socket.AI_PASSIVE,
    )
    return [Endpoint.from_addrinfo(info) for info in infos]


def bind_first(endpoints: List[Endpoint], backlog: int) -> Tuple[socket.socket, Endpoint]:
    """
    Bind to the first candidate that accepts it, then start listening.

    Address reuse is enabled so a restarted listener does not fail
    with "address already in use".

    Raises:
        BindError: if no candidate could be bound
    """
    for endpoint in endpoints:
        try:
            sock = endpoint.create_socket()
        except OSError as e:
            logger.warning(f"server: socket for {endpoint}: {e}")
            continue

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(endpoint.address)
        except OSError as e:
            sock.close()
            logger.warning(f"server: bind {endpoint}: {e}")
            continue

        try:
            sock.listen(backlog)
        except OSError as e:
            sock.close()
            raise BindError(f"listen on {endpoint} failed: {e}") from e

        sock.setblocking(False)
        return sock, endpoint

    raise BindError("failed to bind")
