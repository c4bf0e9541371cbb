"""
Output Sinks

Where a worker sends the bytes it receives. A worker awaits begin()
and end() around its stream while it holds the admission token, so a
sink only ever sees one stream at a time.

A slow consumer (a paused pager, a full pipe) must only hold up the
worker that is writing, never the accept loop, so blocking writes are
run in the loop's executor.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, BinaryIO

logger = logging.getLogger(__name__)


class OutputSink:
    """Interface for per-connection byte output."""

    async def begin(self, peer: str):
        pass

    async def write(self, data: bytes):
        raise NotImplementedError

    async def end(self, peer: str):
        pass


class StdoutSink(OutputSink):
    """
    Writes received bytes to stdout as they arrive.

    Each chunk is flushed immediately so the operator sees a transfer
    progress live; a blank-line separator follows each connection. The
    per-connection header goes to the log (stderr) so stdout carries
    only received bytes.
    """

    def __init__(self, stream: Optional[BinaryIO] = None, separator: bytes = b'\n\n'):
        self.stream = stream if stream is not None else sys.stdout.buffer
        self.separator = separator

    def _emit(self, data: bytes):
        self.stream.write(data)
        self.stream.flush()

    async def _emit_async(self, data: bytes):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._emit, data)

    async def begin(self, peer: str):
        logger.info(f"server: received from {peer}:")

    async def write(self, data: bytes):
        await self._emit_async(data)

    async def end(self, peer: str):
        if self.separator:
            await self._emit_async(self.separator)


@dataclass
class BufferSink(OutputSink):
    """
    Accumulates received bytes in memory, per peer.

    Also records the order of begin/write/end events and the highest
    number of streams that were ever open at once.
    """
    streams: Dict[str, bytearray] = field(default_factory=dict)
    events: List[Tuple[str, str]] = field(default_factory=list)
    open_streams: int = 0
    max_open_streams: int = 0
    _current: Optional[str] = field(default=None, repr=False)

    async def begin(self, peer: str):
        self.streams.setdefault(peer, bytearray())
        self.events.append(('begin', peer))
        self._current = peer
        self.open_streams += 1
        self.max_open_streams = max(self.max_open_streams, self.open_streams)

    async def write(self, data: bytes):
        self.streams[self._current].extend(data)
        self.events.append(('write', self._current))

    async def end(self, peer: str):
        self.events.append(('end', peer))
        self.open_streams -= 1

    def data_for(self, peer: str) -> bytes:
        return bytes(self.streams.get(peer, b''))

    @property
    def completed(self) -> List[bytes]:
        """Each finished stream's bytes, in the order streams ended."""
        return [bytes(self.streams[peer]) for kind, peer in self.events if kind == 'end']
