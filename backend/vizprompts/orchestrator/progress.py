"""Observable progress channel for a pipeline run.

A run publishes ProgressEvent values onto an asyncio queue; consumers
(the CLI status line, the session snapshot served by the API) iterate the
channel until it is closed. Publishing never blocks the run.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional

# Stage names published by the pipeline, in order
STAGES = ("validating", "sampling", "analyzing", "structuring", "refining", "projecting", "done")


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    percent: int
    message: str = ""


_CLOSED = object()


class ProgressChannel:
    """Single-consumer stream of ProgressEvent values.

    The latest event is also kept on the channel so pollers (the session
    endpoint) can read the current position without consuming the stream.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.latest: Optional[ProgressEvent] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, stage: str, percent: int, message: str = "") -> None:
        if self._closed:
            return
        event = ProgressEvent(stage=stage, percent=max(0, min(100, percent)), message=message)
        self.latest = event
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
