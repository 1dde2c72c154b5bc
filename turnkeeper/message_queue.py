"""Unbounded outbound message queue feeding the agent transport."""

import asyncio
from typing import Generic, TypeVar

from turnkeeper.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_END = object()


class MessageQueue(Generic[T]):
    """Push-driven async iterable.

    ``push`` never blocks. Once ``end`` is called, further pushes are dropped
    and iteration stops after the already queued items are consumed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def push(self, item: T) -> bool:
        """Queue an item; returns False if the queue was already ended."""
        if self._ended:
            log.debug("Dropping push after queue end")
            return False
        self._queue.put_nowait(item)
        return True

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)

    def qsize(self) -> int:
        return self._queue.qsize() - (1 if self._ended else 0)

    def __aiter__(self) -> "MessageQueue[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _END:
            # Keep the sentinel so repeated iteration also stops.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item  # type: ignore[return-value]
