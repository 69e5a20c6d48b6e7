"""
Progress plumbing between a transfer task and its consumer.

The channel holds at most one pending event: the producer waits for the
consumer to take each event before it can publish the next one, and closes
the channel after the terminal event.
"""

import asyncio
import time

from transfer.models import ProgressEvent, TransferState

_CLOSED = object()
BYTES_PER_MB = 1024 * 1024


class ChannelClosedError(RuntimeError):
    """Raised when sending on a channel that was already closed."""


class ProgressChannel:
    """Single-slot, closed-on-completion stream of ProgressEvents."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False
        self.last_event: ProgressEvent | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ProgressEvent) -> None:
        if self._closed:
            raise ChannelClosedError("progress channel is closed")
        self.last_event = event
        await self._queue.put(event)

    async def close(self) -> None:
        """Signal that no more events follow. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def receive(self) -> ProgressEvent | None:
        """Next event, or None once the channel is closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker so later receivers also see the closure.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.receive()
        if event is None:
            raise StopAsyncIteration
        return event


class SpeedMeter:
    """Average throughput since the first chunk, in MB/s."""

    def __init__(self) -> None:
        self._started = time.monotonic()
        self.total_bytes = 0

    def record(self, byte_count: int) -> None:
        self.total_bytes += byte_count

    def get_speed(self) -> float:
        elapsed = time.monotonic() - self._started
        if elapsed <= 0:
            return 0.0
        return self.total_bytes / elapsed / BYTES_PER_MB


class ProgressTracker:
    """Builds ProgressEvents for one side of a transfer."""

    def __init__(self, session_id: str = "", total_bytes: int = 0) -> None:
        self.session_id = session_id
        self.total_bytes = total_bytes
        self.meter: SpeedMeter | None = None

    @property
    def bytes_moved(self) -> int:
        return self.meter.total_bytes if self.meter else 0

    def start_stream(self) -> None:
        self.meter = SpeedMeter()

    def record(self, byte_count: int) -> None:
        self.meter.record(byte_count)

    def event(self, state: TransferState, error: Exception | None = None) -> ProgressEvent:
        return ProgressEvent(
            state=state,
            bytes_moved=self.bytes_moved,
            total_bytes=self.total_bytes,
            speed=self.meter.get_speed() if self.meter else 0.0,
            session_id=self.session_id,
            error=error,
        )
