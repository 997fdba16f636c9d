"""Cooperative cancellation threaded through a query.

One ``CancelSignal`` is shared by the network call, the stream consumer and
the backoff sleep between retries, so firing it stops whichever is pending.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

from conduit.errors import QueryAborted

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancelSignal:
    """Abort signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Fire the signal. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise QueryAborted(reason=self.reason)

    async def sleep(self, delay_s: float) -> None:
        """Sleep for *delay_s*, raising ``QueryAborted`` as soon as the signal fires."""
        self.raise_if_cancelled()
        if delay_s <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay_s)
        except TimeoutError:
            return
        raise QueryAborted(reason=self.reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable*, cancelling it if the signal fires first."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise QueryAborted(reason=self.reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        with suppress(asyncio.CancelledError, Exception):
            await task
        raise QueryAborted(reason=self.reason)


async def run_cancellable(awaitable: Awaitable[T], cancel: CancelSignal | None) -> T:
    """Await *awaitable* under *cancel* when one is supplied."""
    if cancel is None:
        return await awaitable
    return await cancel.run(awaitable)
