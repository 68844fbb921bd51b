"""
Turn-scoped cancellation signal.

One 'CancellationSignal' is created per chat turn and threaded through every
suspension point: the model stream and each tool call. Firing it (client
disconnect, execution ceiling, explicit abort) makes any awaitable wrapped in
'guard()' fail promptly with 'Cancelled', and the outstanding task is cancelled
rather than left running in the background.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from research_toolkit.errors import Cancelled

T = TypeVar("T")


class CancellationSignal:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the signal. Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await 'awaitable' unless the signal fires first.

        Raises 'Cancelled' as soon as the signal is set; the wrapped task is
        cancelled and awaited so no work outlives the turn.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise Cancelled(self.reason or "cancelled")
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise Cancelled(self.reason or "cancelled")
