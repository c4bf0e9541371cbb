"""
Connection Worker

Handles exactly one accepted connection:
1. Wait for the admission token
2. Read into a fixed-size buffer until the peer closes, emitting each
   chunk as it arrives
3. Release the token, close the connection, report an exit status

A worker only sees what its WorkerContext gives it. It holds no
reference to the listener or to sibling workers, and an error inside
one worker ends that worker alone.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..errors import EXIT_OK, EXIT_ERROR
from ..sync.admission import AdmissionSemaphore
from .connection import Connection
from .output import OutputSink

logger = logging.getLogger(__name__)

EXIT_SUCCESS = EXIT_OK
EXIT_FAILURE = EXIT_ERROR


@dataclass(frozen=True)
class WorkerContext:
    """Everything a worker is allowed to know, fixed at creation."""
    bufsize: int
    semaphore: AdmissionSemaphore
    sink: OutputSink


@dataclass
class WorkerResult:
    """Exit report of a finished worker."""
    peer: str
    status: int = EXIT_SUCCESS
    bytes_received: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == EXIT_SUCCESS


class ConnectionWorker:
    """Drains one connection into the output sink under the admission token."""

    def __init__(self, conn: Connection, context: WorkerContext):
        self.conn = conn
        self.context = context

    @property
    def peer(self) -> str:
        return self.conn.peer_name

    async def run(self) -> WorkerResult:
        """Run the worker to completion; the connection is always closed."""
        result = WorkerResult(peer=self.peer)

        try:
            async with self.context.semaphore.hold(owner=self.peer):
                logger.debug(f"Worker {self.peer} admitted")
                await self._drain(result)
        finally:
            self.conn.close()

        if result.ok:
            logger.info(f"Received {result.bytes_received:,} bytes from {self.peer}")
        return result

    async def _drain(self, result: WorkerResult):
        try:
            buffer = bytearray(self.context.bufsize)
        except MemoryError:
            logger.error(f"Worker {self.peer}: could not allocate {self.context.bufsize} byte buffer")
            result.status = EXIT_FAILURE
            result.error = 'buffer allocation failed'
            return

        view = memoryview(buffer)
        sink = self.context.sink
        await sink.begin(self.peer)
        try:
            while True:
                try:
                    count = await self.conn.recv_into(buffer)
                except InterruptedError:
                    continue
                except OSError as e:
                    logger.error(f"Worker {self.peer}: recv: {e}")
                    result.status = EXIT_FAILURE
                    result.error = str(e)
                    break

                if count == 0:
                    break

                await sink.write(bytes(view[:count]))
                result.bytes_received += count
        finally:
            await sink.end(self.peer)


def spawn_worker(conn: Connection, context: WorkerContext) -> asyncio.Task:
    """Start a worker task for an accepted connection."""
    worker = ConnectionWorker(conn, context)
    return asyncio.create_task(worker.run(), name=f"worker-{worker.peer}")
