"""
Transport Listener

Design Decision: Concurrency Model
==================================

Options Considered:
1. Process per connection (fork)
   - Strong isolation, but needs a kernel-named semaphore and
     SIGCHLD reaping to coordinate and clean up

2. Thread per connection
   - Shared memory by default, blocking I/O everywhere

3. One asyncio task per connection
   - Cheap, cancellable, joinable
   - Isolation enforced by what each task is given

Decision: asyncio task per connection
- The accept loop blocks only in accept() and never awaits a worker
- Each worker gets a frozen WorkerContext and its own Connection,
  nothing else
- An in-process binary semaphore serializes the output phase
- A Reaper supervises the tasks instead of SIGCHLD + waitpid()

Lifecycle:
    start()          bind, create semaphore, begin accepting
    serve_forever()  run until stop() (or process termination)
    stop()           stop accepting, then drain or cancel workers
"""

import asyncio
import random
import socket
import logging
from typing import Optional

from ..config import DEFAULT_PORT, DEFAULT_BUFSIZE, BACKLOG
from ..errors import ResolveError
from ..sync.admission import AdmissionSemaphore, SemaphoreNamespace, generate_semaphore_name
from ..sync.reaper import Reaper
from .connection import Connection, resolve_passive, bind_first, format_address
from .output import OutputSink, StdoutSink
from .worker import WorkerContext, spawn_worker

logger = logging.getLogger(__name__)

# Pause after a failed accept() so a persistent error cannot spin the loop
ACCEPT_RETRY_DELAY = 0.1


class Listener:
    """
    TCP listener that hands every accepted connection to its own worker.
    """

    def __init__(self, port: int = DEFAULT_PORT, host: Optional[str] = None,
                 bufsize: int = DEFAULT_BUFSIZE, backlog: int = BACKLOG,
                 sink: Optional[OutputSink] = None,
                 namespace: Optional[SemaphoreNamespace] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize a listener.

        Args:
            port: TCP port to bind (0 picks a free one)
            host: Local address to bind (None for the wildcard address)
            bufsize: Receive buffer size given to every worker
            backlog: Pending-connection queue length
            sink: Where workers emit received bytes (stdout by default)
            namespace: Semaphore namespace (a private one by default)
            rng: Source for the semaphore name
        """
        self.port = port
        self.host = host
        self.bufsize = bufsize
        self.backlog = backlog
        self.sink = sink or StdoutSink()
        self.namespace = namespace or SemaphoreNamespace()
        self._rng = rng or random.Random()

        self.reaper = Reaper(on_reap=self._on_reap)
        self.semaphore: Optional[AdmissionSemaphore] = None
        self.context: Optional[WorkerContext] = None
        self.address = None

        self._sock: Optional[socket.socket] = None
        self._accept_task: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self.accepted = 0
        self.accept_errors = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> Optional[int]:
        return self.address[1] if self.address else None

    async def start(self):
        """Bind, create the admission semaphore and begin accepting."""
        if self._running:
            return

        try:
            endpoints = await resolve_passive(self.port, self.host)
        except socket.gaierror as e:
            raise ResolveError(f"getaddrinfo: {e.strerror or e}") from e

        self._sock, _ = bind_first(endpoints, self.backlog)
        self.address = self._sock.getsockname()
        logger.info(f"server: listening on {format_address(self.address)}")

        # Workers receive the object itself, so the name can go at once
        name = generate_semaphore_name(self._rng)
        self.semaphore = self.namespace.create(name)
        self.namespace.unlink(name)
        logger.info(f"server: using semaphore named {name}")

        self.context = WorkerContext(
            bufsize=self.bufsize,
            semaphore=self.semaphore,
            sink=self.sink,
        )

        self._running = True
        self._accept_task = asyncio.create_task(self._accept_loop(), name='accept-loop')
        logger.info("server: waiting for connections...")

    async def _accept_loop(self):
        loop = asyncio.get_running_loop()

        while self._running:
            try:
                sock, addr = await loop.sock_accept(self._sock)
            except InterruptedError:
                continue
            except OSError as e:
                if not self._running:
                    break
                self.accept_errors += 1
                logger.warning(f"server: accept: {e}")
                await asyncio.sleep(ACCEPT_RETRY_DELAY)
                continue

            conn = Connection(sock, peer=addr)
            self.accepted += 1
            logger.info(f"server: got connection from {conn.peer_name}")

            self.reaper.track(spawn_worker(conn, self.context))

    async def serve_forever(self):
        """Accept connections until stop() is called."""
        await self.start()
        await asyncio.wait([self._accept_task])

        if not self._accept_task.cancelled() and self._accept_task.exception():
            raise self._accept_task.exception()

    async def stop(self, drain: bool = True):
        """
        Stop accepting connections.

        Args:
            drain: Wait for in-flight workers to finish (otherwise
                cancel them)
        """
        if not self._running:
            return

        self._running = False

        if self._accept_task:
            self._accept_task.cancel()
            await asyncio.gather(self._accept_task, return_exceptions=True)

        if self._sock:
            self._sock.close()

        if not drain:
            cancelled = self.reaper.cancel_all()
            if cancelled:
                logger.info(f"Cancelled {cancelled} in-flight workers")

        await self.reaper.drain()
        logger.info(f"server: stopped. Accepted {self.accepted} connections, "
                    f"{self.reaper.failed} failed")

    def _on_reap(self, task: asyncio.Task, result):
        if result is not None:
            logger.debug(f"Reaped {task.get_name()} (status {result.status})")

    def get_stats(self) -> dict:
        """Get listener statistics."""
        return {
            'address': format_address(self.address) if self.address else None,
            'semaphore': self.semaphore.name if self.semaphore else None,
            'bufsize': self.bufsize,
            'running': self._running,
            'accepted': self.accepted,
            'accept_errors': self.accept_errors,
            **self.reaper.get_stats(),
        }
