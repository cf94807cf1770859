"""
Event channel between the pipeline (producer) and the SSE transport (consumer).
Closing the channel is how either side says "stop".
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_CLOSED = object()

KEEPALIVE_FRAME = ": keep-alive\n\n"


def event(name: str, **payload: Any) -> Dict[str, Any]:
    return {"event": name, **payload}


def sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class EventChannel:
    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, item: Dict[str, Any]) -> bool:
        """Queue an event. Returns ``False`` (and drops it) once closed."""
        if self._closed:
            return False
        await self._queue.put(item)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def receive(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Next event, or ``None`` when the channel is closed and drained.
        Raises ``asyncio.TimeoutError`` if nothing arrives within ``timeout``.
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item


async def relay_events(
    produce: Callable[[EventChannel], Awaitable[None]],
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """
    Run ``produce`` as a background task and turn its events into SSE frames.
    Emits a keep-alive comment whenever the producer is idle for
    ``keepalive_seconds``; stops and cancels the producer on disconnect.
    """
    channel = EventChannel()
    producer = asyncio.create_task(produce(channel))
    try:
        while True:
            if await is_disconnected():
                logger.info("[STREAM] Client disconnected — stopping relay")
                break
            try:
                item = await channel.receive(timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if item is None:
                break
            yield sse_frame(item)
    finally:
        channel.close()
        if not producer.done():
            producer.cancel()
        await asyncio.wait({producer})
