"""Cancelable async stream used for snapshot and invalidation delivery.

A `Channel` is fed by a producer (`publish`, `fail`, `close`) and consumed
with `async for`. Closing it, from either side, ends iteration and runs the
optional `on_close` hook exactly once so the producer can drop its reference.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

_END = object()


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error


class Channel(Generic[T]):
    """Unbounded single-consumer queue with an explicit end and error marker."""

    def __init__(self, on_close: Optional[Callable[["Channel[T]"], None]] = None) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, item: T) -> None:
        """Queue an item for the consumer; ignored once the channel is closed."""
        if self._closed:
            return
        self._queue.put_nowait(item)

    def fail(self, error: BaseException) -> None:
        """Terminate the stream; the consumer sees `error` after draining queued items."""
        if self._closed:
            return
        self._queue.put_nowait(_Failure(error))
        self._finish()

    def close(self) -> None:
        """End the stream normally. Safe to call more than once."""
        if self._closed:
            return
        self._queue.put_nowait(_END)
        self._finish()

    def _finish(self) -> None:
        self._closed = True
        hook, self._on_close = self._on_close, None
        if hook is not None:
            hook(self)

    def __aiter__(self) -> "Channel[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _END:
            # Keep the end marker for any later reader.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._queue.put_nowait(_END)
            raise item.error
        return item

    async def next(self, timeout: Optional[float] = None) -> T:
        """Return the next item, waiting at most `timeout` seconds."""
        return await asyncio.wait_for(self.__anext__(), timeout)
