"""Cooperative cancellation for a single turn."""

import asyncio
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from crewgate.errors import TurnAborted

T = TypeVar("T")


class CancellationToken:
    """Single source of truth for cancelling one turn.

    Every suspending call in a turn (stream reads, subprocess waits, HTTP
    requests) goes through :meth:`run`, so cancellation is observed at the
    next await rather than after the current operation finishes.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Signal cancellation and notify registered listeners once."""
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnAborted()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    @property
    def listener_count(self) -> int:
        return len(self._callbacks)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await ``awaitable`` unless cancellation or ``timeout`` comes first.

        Raises:
            TurnAborted: If the token is cancelled first
            asyncio.TimeoutError: If the timeout elapses first
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TurnAborted()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, Exception):
            pass
        if waiter in done or self.cancelled:
            raise TurnAborted()
        raise asyncio.TimeoutError()

    async def iterate(self, iterable: AsyncIterable[T]) -> AsyncIterator[T]:
        """Async-iterate ``iterable``, racing every step against cancellation."""
        iterator = iterable.__aiter__()
        while True:
            item = await self.run(_next(iterator))
            if item is _END:
                return
            yield item


_END = object()


async def _next(iterator: AsyncIterator[T]):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END
