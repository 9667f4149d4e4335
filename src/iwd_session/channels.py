"""Closable asyncio hand-off channels used between the daemon and the UI."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from .errors import ChannelClosed

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """Unbounded single-purpose queue that can be closed from either side.

    Closing wakes every task blocked in :meth:`recv`; they raise
    :class:`ChannelClosed` once the queued items are consumed.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T) -> None:
        if self._closed:
            raise ChannelClosed()
        self._queue.put_nowait(item)

    async def recv(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place for the next waiter.
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed()
        return item  # type: ignore[return-value]

    def recv_nowait(self) -> T:
        """Return the next queued item, raising ``asyncio.QueueEmpty`` when none is."""

        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed()
        return item  # type: ignore[return-value]

    def drain(self) -> int:
        """Discard queued items and return how many were dropped."""

        dropped = 0
        keep_marker = False
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                keep_marker = True
                continue
            dropped += 1
        if keep_marker:
            self._queue.put_nowait(_CLOSED)
        return dropped

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)


__all__ = ["Channel"]
