"""
OKX Connector - Bounded Async Channel.

A closable FIFO over asyncio.Queue.

- `put()` blocks while the channel is full (backpressure, never drops)
- `put()` or `close()` on a closed channel raises ChannelClosedError
- consumers drain remaining items after close, then iteration stops
"""

import asyncio
import logging
from typing import Any, AsyncIterator

from .errors import ChannelClosedError


logger = logging.getLogger(__name__)

_CLOSED = object()


class Channel:
    """Bounded channel with close semantics."""

    def __init__(self, maxsize: int, name: str = "channel"):
        if maxsize <= 0:
            raise ValueError("Channel capacity must be positive")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def full(self) -> bool:
        return self._queue.full()

    async def put(self, item: Any) -> None:
        """Send an item, waiting for room if the channel is full."""
        if self._closed:
            raise ChannelClosedError(f"send on closed channel {self._name}")
        await self._queue.put(item)

    def put_nowait(self, item: Any) -> None:
        if self._closed:
            raise ChannelClosedError(f"send on closed channel {self._name}")
        self._queue.put_nowait(item)

    async def get(self) -> Any:
        """
        Receive the next item.

        Raises:
            ChannelClosedError: channel is closed and fully drained
        """
        if self._closed and self._queue.empty():
            raise ChannelClosedError(f"channel {self._name} is closed")
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiting consumer
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosedError(f"channel {self._name} is closed")
        return item

    def close(self) -> None:
        """Close the channel. Must be called exactly once."""
        if self._closed:
            raise ChannelClosedError(f"close of closed channel {self._name}")
        self._closed = True
        try:
            # Wakes consumers blocked on an empty queue
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass
        logger.debug(f"Channel {self._name} closed")

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        try:
            return await self.get()
        except ChannelClosedError:
            raise StopAsyncIteration
