"""
Single-producer / single-consumer hand-off queue.

Carries DecodedEvents from the indexer loop to the event consumer in FIFO
order over an asyncio.Queue. Unbounded by default; with a positive maxsize
the overflow policy decides what a full queue does:

    BLOCK       : producer waits for space (optionally up to put_timeout,
                  then BackpressureTimeout)
    DROP_OLDEST : oldest queued event is discarded and counted

Either side can end the channel:
    close()  : consumer is gone; put() raises ConsumerDisconnected, also
               for a producer already waiting for space
    finish() : producer is done; get() returns None once drained
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Generic, TypeVar

from shared.exceptions import BackpressureTimeout, ConsumerDisconnected
from shared.types import OverflowPolicy

T = TypeVar("T")

# Wakes a consumer blocked in get() when the channel ends.
_END = object()


class HandoffQueue(Generic[T]):
    def __init__(
        self,
        maxsize: int = 0,
        overflow_policy: OverflowPolicy = OverflowPolicy.BLOCK,
        put_timeout: float | None = None,
    ) -> None:
        if maxsize < 0:
            raise ValueError("maxsize must be >= 0")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._policy = overflow_policy
        self._put_timeout = put_timeout
        self._closed = False
        self._finished = False
        self._waiting_getters = 0
        self.dropped = 0
        self.delivered = 0

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def policy(self) -> OverflowPolicy:
        return self._policy

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._finished

    def qsize(self) -> int:
        return self._queue.qsize()

    def _discard_all(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    def _wake_getter(self) -> None:
        # A waiting getter means the queue is empty, so there is room.
        if self._waiting_getters:
            self._queue.put_nowait(_END)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def put(self, item: T) -> None:
        """
        Enqueue `item`.

        Raises ConsumerDisconnected if the consumer closed the queue and
        BackpressureTimeout if a BLOCK queue stays full past put_timeout.
        """
        if self._closed:
            raise ConsumerDisconnected("Hand-off queue receiver dropped")
        if self._finished:
            raise RuntimeError("put() after finish()")

        if self._policy is OverflowPolicy.DROP_OLDEST:
            if self._queue.full():
                self._queue.get_nowait()
                self.dropped += 1
            self._queue.put_nowait(item)
            return

        try:
            self._queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            pass

        try:
            await asyncio.wait_for(self._queue.put(item), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            if self._closed:
                raise ConsumerDisconnected("Hand-off queue receiver dropped") from None
            raise BackpressureTimeout(
                f"Hand-off queue full ({self.maxsize}) for {self._put_timeout}s"
            ) from None
        if self._closed:
            self._discard_all()
            raise ConsumerDisconnected("Hand-off queue receiver dropped")

    def finish(self) -> None:
        """Producer is done; the consumer drains and then sees None."""
        if self._finished:
            return
        self._finished = True
        self._wake_getter()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def get(self) -> T | None:
        """Next item in FIFO order, or None after finish() once drained."""
        if self._closed:
            return None
        if self._finished and self._queue.empty():
            return None

        self._waiting_getters += 1
        try:
            item = await self._queue.get()
        finally:
            self._waiting_getters -= 1
        if item is _END or self._closed:
            return None
        self.delivered += 1
        return item

    def close(self) -> None:
        """Consumer drops the receiving end. Pending items are discarded."""
        if self._closed:
            return
        self._closed = True
        # Draining frees a producer blocked in put(); it then sees the flag.
        self._discard_all()
        self._wake_getter()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item
