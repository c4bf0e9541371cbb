"""
Admission Semaphore

Design Decision: Serializing Worker Output
==========================================

Options Considered:
1. Buffer each connection fully, print on completion
   - Unbounded memory, no live output

2. One lock per output stream write
   - Chunks from concurrent peers still interleave

3. Binary semaphore around a worker's whole output phase
   - One connection's bytes are shown start to finish
   - Accepting new connections is never throttled

Decision: Named binary semaphore held for the whole output phase
- Workers are independent tasks; the semaphore is the only state
  they share
- The Listener creates it under a random name, hands the object to
  every worker it spawns, and unlinks the name right away: workers
  never look it up, and nothing else can find it afterwards
- Holders always release through `async with`, including on errors
  and cancellation
"""

import asyncio
import random
import logging
from typing import Dict, Optional

from ..errors import SemaphoreUnlinkedError

logger = logging.getLogger(__name__)

# Names look like "/sem12345678"
NAME_PREFIX = '/sem'
NAME_MODULUS = 100000000


def generate_semaphore_name(rng: Optional[random.Random] = None) -> str:
    """Derive a semaphore name unlikely to collide with other instances."""
    rng = rng or random.Random()
    return f"{NAME_PREFIX}{rng.randrange(2 ** 31) % NAME_MODULUS}"


class AdmissionSemaphore:
    """
    Count-1 semaphore that admits one worker at a time.

    Usage:
        async with semaphore.hold(owner=peer):
            ...  # critical section
    """

    def __init__(self, name: str):
        self.name = name
        self._semaphore = asyncio.BoundedSemaphore(1)
        self.holder: Optional[str] = None
        self.acquisitions = 0

    def locked(self) -> bool:
        """True while a worker holds the admission token."""
        return self._semaphore.locked()

    async def acquire(self, owner: str = ''):
        """Wait for the admission token."""
        await self._semaphore.acquire()
        self.holder = owner
        self.acquisitions += 1

    def release(self):
        """
        Return the admission token, waking one waiter if any.

        Raises:
            ValueError: if the token is not currently held
        """
        self.holder = None
        self._semaphore.release()

    def hold(self, owner: str = '') -> '_Held':
        """Scoped acquisition: released on every exit path."""
        return _Held(self, owner)

    def __repr__(self) -> str:
        state = f"held by {self.holder}" if self.locked() else 'available'
        return f"<AdmissionSemaphore {self.name} {state}>"


class _Held:
    """Async context manager returned by AdmissionSemaphore.hold()."""

    def __init__(self, semaphore: AdmissionSemaphore, owner: str):
        self._semaphore = semaphore
        self._owner = owner

    async def __aenter__(self) -> AdmissionSemaphore:
        await self._semaphore.acquire(self._owner)
        return self._semaphore

    async def __aexit__(self, exc_type, exc, tb):
        self._semaphore.release()


class SemaphoreNamespace:
    """
    Registry of named semaphores for one listener.

    Unlinking removes a name only; references already handed out keep
    working.
    """

    def __init__(self):
        self._semaphores: Dict[str, AdmissionSemaphore] = {}

    def create(self, name: str) -> AdmissionSemaphore:
        """Create a semaphore under a name that is not yet in use."""
        if name in self._semaphores:
            raise ValueError(f"semaphore {name} may be in use")
        semaphore = AdmissionSemaphore(name)
        self._semaphores[name] = semaphore
        logger.debug(f"Created semaphore {name}")
        return semaphore

    def open(self, name: str) -> AdmissionSemaphore:
        """
        Look up an existing semaphore by name.

        Raises:
            SemaphoreUnlinkedError: if no semaphore has that name
        """
        try:
            return self._semaphores[name]
        except KeyError:
            raise SemaphoreUnlinkedError(f"no semaphore named {name}") from None

    def unlink(self, name: str):
        """Remove a name from the namespace."""
        if self._semaphores.pop(name, None) is not None:
            logger.debug(f"Unlinked semaphore {name}")

    def __contains__(self, name: str) -> bool:
        return name in self._semaphores

    def __len__(self) -> int:
        return len(self._semaphores)
