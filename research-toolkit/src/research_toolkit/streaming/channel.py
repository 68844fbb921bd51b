"""
Single-producer, single-consumer event channel.

The agent loop appends events with 'send()'; the HTTP layer drains them by
iterating the channel. Delivery order is append order. The producer ends the
stream exactly once with 'close()' (normal end, delivers 'finish') or
'close_with_error()' (delivers 'error'), so the consumer always sees an
explicit end instead of a silently dropped connection.
"""

import asyncio
from collections.abc import AsyncIterator

from loguru import logger

from research_toolkit.errors import ChannelClosedError
from research_toolkit.streaming.events import TERMINAL_EVENT_TYPES, ErrorEvent, FinishEvent, StreamEvent


class EventChannel:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        self._closed = False
        self._consumed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: StreamEvent) -> None:
        if self._closed:
            raise ChannelClosedError(f"Cannot send {event.type!r}: channel is closed")
        if event.type in TERMINAL_EVENT_TYPES:
            raise ValueError("Terminal events are sent by close() or close_with_error()")
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._terminate(FinishEvent())

    def close_with_error(self, message: str) -> None:
        self._terminate(ErrorEvent(message=message))

    def _terminate(self, event: FinishEvent | ErrorEvent) -> None:
        if self._closed:
            logger.warning(f"Channel already closed, dropping terminal {event.type!r} event")
            return
        self._closed = True
        self._queue.put_nowait(event)

    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._consumed:
            raise RuntimeError("EventChannel supports a single consumer")
        self._consumed = True
        while True:
            event = await self._queue.get()
            yield event
            if event.type in TERMINAL_EVENT_TYPES:
                return
