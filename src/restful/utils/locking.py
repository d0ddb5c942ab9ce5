"""Named mutexes shared by precheck gates.

Resources that share a backend-level ordering constraint (a control-plane
lease, a single-writer collection) name the same mutex in their prechecks.
Phases holding the same name serialize; other names are unaffected.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger(__name__)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class MutexRegistry:
    """
    One asyncio.Lock per name, created on first use.

    Locks belong to the event loop that was running when they were created.
    The registry serves one loop at a time: the first lookup from a different
    running loop (a second ``asyncio.run``, say) starts a fresh table, so a
    lock bound to a finished loop is never awaited again. Within one loop,
    locks are never discarded and two tasks looking up the same name always
    contend on the same lock.
    """

    def __init__(self) -> None:
        self._loop: asyncio.AbstractEventLoop | None = None
        self._locks: dict[str, asyncio.Lock] = {}

    def _table(self) -> dict[str, asyncio.Lock]:
        loop = _running_loop()
        if loop is not None and loop is not self._loop:
            if self._locks:
                logger.debug("Event loop changed, dropping mutexes", names=sorted(self._locks))
            self._loop = loop
            self._locks = {}
        return self._locks

    def lock_for(self, name: str) -> asyncio.Lock:
        locks = self._table()
        lock = locks.get(name)
        if lock is None:
            lock = locks[name] = asyncio.Lock()
        return lock

    def locked(self, name: str) -> bool:
        lock = self._table().get(name)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """
        Hold mutex ``name`` for the duration of the block.

        Usage:
            async with registry.hold("vnet-lease"):
                await modify_resource()
        """
        if self.locked(name):
            logger.debug("Waiting for mutex", name=name)
        async with self.lock_for(name):
            yield


_MUTEX_REGISTRY: MutexRegistry | None = None


def get_mutex_registry() -> MutexRegistry:
    """Return the process-wide registry used by every precheck mutex."""
    global _MUTEX_REGISTRY
    if _MUTEX_REGISTRY is None:
        _MUTEX_REGISTRY = MutexRegistry()
    return _MUTEX_REGISTRY
