"""
Progress sinks - push status, byte progress and error frames to the caller
Frames flow one way; there is no acknowledgement or back-pressure from the consumer.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict

import structlog

logger = structlog.get_logger(__name__)

_CLOSED = object()


class ProgressSink(ABC):
    """Channel a transfer reports through; it never depends on the transport behind it"""

    @abstractmethod
    async def emit(self, frame: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def emit_message(self, message: str) -> None:
        await self.emit({"message": message})

    async def emit_progress(self, file: str, progress: int, total: int) -> None:
        await self.emit({"file": file, "progress": progress, "total": total})

    async def emit_error(self, error: str) -> None:
        await self.emit({"error": error})


def encode_sse(frame: Dict[str, Any]) -> str:
    """Encode a frame as a Server-Sent Events ``data:`` line"""
    return f"data: {json.dumps(frame)}\n\n"


class QueueProgressSink(ProgressSink):
    """Sink backed by an unbounded queue and drained by an event-stream response

    Once the consumer goes away the sink is detached: later frames are dropped,
    but the producing transfer keeps running.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.detached = False

    async def emit(self, frame: Dict[str, Any]) -> None:
        if self.closed or self.detached:
            return
        self._queue.put_nowait(frame)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        if not self.detached:
            logger.info("Progress consumer disconnected", label=self.label)
        self.detached = True

    async def frames(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield frames until the sink is closed"""
        try:
            while True:
                frame = await self._queue.get()
                if frame is _CLOSED:
                    return
                yield frame
        finally:
            if not self.closed:
                self.detach()

    async def event_stream(self) -> AsyncIterator[str]:
        """Yield SSE-encoded frames; used as a streaming response body"""
        try:
            while True:
                frame = await self._queue.get()
                if frame is _CLOSED:
                    return
                yield encode_sse(frame)
        finally:
            if not self.closed:
                self.detach()


class NullProgressSink(ProgressSink):
    """Discards every frame; for imports nobody is watching"""

    async def emit(self, frame: Dict[str, Any]) -> None:
        pass

    async def close(self) -> None:
        pass
