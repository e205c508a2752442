"""Output events emitted while a subprocess runs.

Each event is a small dataclass so consumers can dispatch on type;
event_to_dict / dict_to_event convert to and from the wire shape
``{"type": "data" | "binary_detected" | "binary_progress", ...}``.

OutputStream is a bounded async queue that lets a consumer iterate
events of a single run instead of registering a callback.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputEvent:
    """Base event for a running process."""
    type: str = ""


@dataclass(frozen=True)
class DataEvent(OutputEvent):
    type: str = "data"
    stream: str = "stdout"  # "stdout" or "stderr"
    chunk: str = ""


@dataclass(frozen=True)
class BinaryDetectedEvent(OutputEvent):
    type: str = "binary_detected"


@dataclass(frozen=True)
class BinaryProgressEvent(OutputEvent):
    type: str = "binary_progress"
    bytes_received: int = 0


_EVENT_MAP: dict[str, type[OutputEvent]] = {
    "data": DataEvent,
    "binary_detected": BinaryDetectedEvent,
    "binary_progress": BinaryProgressEvent,
}


def event_to_dict(event: OutputEvent) -> dict[str, Any]:
    """Convert a typed event to its plain-dict wire shape."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        d[f] = getattr(event, f)
    if "bytes_received" in d:
        d["bytesReceived"] = d.pop("bytes_received")
    return d


def dict_to_event(data: dict[str, Any]) -> OutputEvent:
    """Convert a wire-shape dict into a typed event."""
    event_type = data.get("type", "")
    cls = _EVENT_MAP.get(event_type, OutputEvent)
    payload = dict(data)
    if "bytesReceived" in payload:
        payload["bytes_received"] = payload.pop("bytesReceived")
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in payload.items() if k in valid_fields}
    return cls(**filtered)


class OutputStream:
    """Bounded queue of output events for one process run.

    Producers await put() (backpressure instead of dropping);
    the consumer iterates consume() until close() is called and
    the queue has drained.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, event: OutputEvent) -> None:
        if self._closed:
            logger.debug("OutputStream closed, dropping %s", event.type)
            return
        await self._queue.put(event)

    async def close(self) -> None:
        """Mark the end of the run. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(self._CLOSED)

    async def consume(self) -> AsyncIterator[OutputEvent]:
        """Yield events in emission order until the stream is closed."""
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
