"""
Host-provided cancellation signal.

A phase may suspend at any HTTP call, poll sleep, or mutex acquire. The host
hands the engine a CancelScope and calls ``cancel()`` when it wants the phase
to stop; every suspension point then raises CanceledError and aborts the
in-flight work.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .exceptions import CanceledError

T = TypeVar("T")


class CancelScope:
    """
    Cooperative cancellation signal shared by the phases of one resource.

    Usage:
        scope = CancelScope()
        task = asyncio.create_task(orchestrator.create(config, cancel=scope))
        ...
        scope.cancel()  # task raises CanceledError
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Fire the signal."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise CanceledError if the signal already fired."""
        if self._event.is_set():
            raise CanceledError()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for the given duration unless cancelled first.

        Args:
            seconds: Delay in seconds, negative values are treated as zero.

        Raises:
            CanceledError: If the signal fires before the delay elapses.
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise CanceledError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable``, aborting it if the signal fires first.

        Args:
            awaitable: Coroutine or future to run.

        Returns:
            The awaitable's result.

        Raises:
            CanceledError: If the signal fires before completion.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CanceledError()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        if task.cancelled():
            raise CanceledError()
        return task.result()
