"""
Typed event channel between the chat orchestrator and the HTTP transport.

The orchestrator (producer) publishes `ChatStreamEvent`s; the transport (consumer)
iterates the channel and serializes each event as one SSE frame. Closing the channel
ends iteration once every queued event has been delivered.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Literal, Optional

EventType = Literal[
    "text_delta",
    "tool_start",
    "tool_end",
    "chart_data",
    "done",
    "suggested_queries",
    "evaluation",
    "error",
]


@dataclass
class ChatStreamEvent:
    """Single event in the chat stream."""

    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_sse(self) -> str:
        return f"event: {self.event_type}\ndata: {json.dumps(self.payload, ensure_ascii=False, default=str)}\n\n"


_CLOSED = object()


class EventChannel:
    """Unbounded single-consumer queue of chat events."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: ChatStreamEvent) -> None:
        if self._closed:
            raise RuntimeError("event channel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[ChatStreamEvent]:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the sentinel for any later reader.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ChatStreamEvent]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[ChatStreamEvent]:
        while True:
            ev = await self.get()
            if ev is None:
                return
            yield ev
