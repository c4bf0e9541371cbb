"""
Transport Connector

Streams one local file, verbatim, over a single TCP connection.

Flow:
1. Resolve the target host into candidate endpoints
2. Connect to the first candidate that opens and completes a handshake
3. Read the file in fixed-size chunks and push each chunk until the
   transport has accepted every byte of it
4. Close the connection; the peer sees end-of-transfer as EOF

There is no framing and no handshake beyond TCP's own.
"""

import asyncio
import socket
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import aiofiles

from ..config import DEFAULT_PORT, SEND_CHUNK_SIZE
from ..errors import ResolveError, ConnectError, SourceFileError, TransferError
from .connection import Connection, Endpoint

logger = logging.getLogger(__name__)


@dataclass
class TransferReport:
    """Outcome of a completed send."""
    peer: str
    path: Path
    bytes_sent: int = 0
    chunks_sent: int = 0


async def resolve(host: str, port: int = DEFAULT_PORT) -> List[Endpoint]:
    """
    Resolve a host into connectable TCP endpoints.

    Raises:
        ResolveError: if the lookup fails or yields nothing
    """
    if not host:
        raise ResolveError("hostname must not be empty")

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(
            host, port,
            family=socket.AF_UNSPEC,
            type=socket.SOCK_STREAM,
        )
    except socket.gaierror as e:
        raise ResolveError(f"getaddrinfo: {e.strerror or e}") from e

    if not infos:
        raise ResolveError(f"getaddrinfo: no addresses for {host}")

    return [Endpoint.from_addrinfo(info) for info in infos]


async def connect(endpoints: List[Endpoint]) -> Connection:
    """
    Connect to the first endpoint that accepts.

    Candidates that fail to open a socket or to connect are skipped,
    never retried.

    Raises:
        ConnectError: if every candidate failed
    """
    loop = asyncio.get_running_loop()

    for endpoint in endpoints:
        try:
            sock = endpoint.create_socket()
        except OSError as e:
            logger.warning(f"client: socket: {e}")
            continue

        sock.setblocking(False)
        try:
            await loop.sock_connect(sock, endpoint.address)
        except OSError as e:
            logger.warning(f"client: connect {endpoint}: {e}")
            sock.close()
            continue
        except BaseException:
            sock.close()
            raise

        logger.info(f"client: connecting to {endpoint}")
        return Connection(sock, peer=endpoint.address)

    raise ConnectError("failed to connect")


async def send_all(conn: Connection, data: bytes) -> int:
    """
    Send every byte of data, retrying short writes.

    A short write is not an error: the unsent suffix is offered again
    until the transport has accepted it all.

    Returns:
        Number of bytes sent (always len(data))

    Raises:
        TransferError: on a hard write error
    """
    view = memoryview(data)
    total = 0

    while total < len(view):
        try:
            sent = await conn.send(view[total:])
        except OSError as e:
            raise TransferError(f"send: {e}") from e
        total += sent

    return total


async def stream_file(conn: Connection, source, chunk_size: int = SEND_CHUNK_SIZE) -> tuple:
    """
    Pump an open async file object into the connection.

    Returns:
        (bytes_sent, chunks_sent) tuple

    Raises:
        ValueError: if chunk_size is not positive
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    bytes_sent = 0
    chunks_sent = 0

    while True:
        try:
            chunk = await source.read(chunk_size)
        except OSError as e:
            raise SourceFileError(f"an error occurred while reading: {e}") from e
        if not chunk:
            break

        bytes_sent += await send_all(conn, chunk)
        chunks_sent += 1
        logger.debug(f"Sent chunk {chunks_sent} ({len(chunk)} bytes)")

    return bytes_sent, chunks_sent


async def send_file(host: str, path: Union[str, Path], port: int = DEFAULT_PORT,
                    chunk_size: int = SEND_CHUNK_SIZE,
                    endpoints: Optional[List[Endpoint]] = None) -> TransferReport:
    """
    Send a file's entire contents to host:port.

    Args:
        host: Target host name or address
        path: File to send
        port: Target TCP port
        chunk_size: Bytes read from the file per iteration
        endpoints: Pre-resolved candidates (skips resolution when given)

    Returns:
        TransferReport for the completed transfer
    """
    if not path:
        raise SourceFileError("file path must not be empty")
    path = Path(path)

    if endpoints is None:
        endpoints = await resolve(host, port)

    conn = await connect(endpoints)
    async with conn:
        try:
            source = await aiofiles.open(path, 'rb')
        except OSError as e:
            raise SourceFileError(f"could not open {path}: {e.strerror or e}") from e

        try:
            bytes_sent, chunks_sent = await stream_file(conn, source, chunk_size)
        finally:
            await source.close()

    logger.info(f"Sent {path.name} ({bytes_sent:,} bytes in {chunks_sent} chunks)")
    return TransferReport(
        peer=conn.peer_name,
        path=path,
        bytes_sent=bytes_sent,
        chunks_sent=chunks_sent,
    )
