"""
Server-Sent Events encoding for stream events.

Each event becomes one SSE frame whose 'event:' field is the event type and
whose 'data:' field is the JSON-encoded event. Control events therefore arrive
under their own event name ('control') and can never be confused with content.
"""

from collections.abc import AsyncIterable, AsyncIterator

from pydantic import TypeAdapter

from research_toolkit.streaming.events import StreamEvent

SSE_MEDIA_TYPE = "text/event-stream"

_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_sse(event: StreamEvent) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


def decode_sse(body: str) -> list[StreamEvent]:
    """Parse a body made of 'encode_sse' frames back into event models."""
    events = []
    for frame in body.split("\n\n"):
        for line in frame.splitlines():
            if line.startswith("data: "):
                events.append(_event_adapter.validate_json(line[len("data: ") :]))
    return events


async def sse_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_sse(event)
