"""
Byte stream connection with per-operation timeouts and cancellation.

Every blocking read, write or dial is raced against a relative timeout and
against cancellation, so a transfer task never waits on a dead peer longer
than one operation's timeout.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from config import CONNECT_TIMEOUT, IO_TIMEOUT
from transfer.errors import (
    ConnectFailedError,
    ConnectTimeoutError,
    ConnectionTimeoutError,
    HandshakeError,
    TransferCancelledError,
)
from transfer.protocol import decode_line

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESPONSE_BUFFER_SIZE = 1024


async def race(
    operation: Awaitable[T],
    timeout: float | None,
    *cancel_events: asyncio.Event,
) -> T:
    """Await ``operation`` unless the timeout expires or a cancel event fires.

    Raises ConnectionTimeoutError on timeout and TransferCancelledError on
    cancellation; the operation is cancelled in both cases.
    """
    op_task = asyncio.ensure_future(operation)
    cancel_tasks = [asyncio.ensure_future(event.wait()) for event in cancel_events]
    try:
        done, _ = await asyncio.wait(
            [op_task, *cancel_tasks],
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if op_task in done:
            return op_task.result()
        if not done:
            raise ConnectionTimeoutError()
        raise TransferCancelledError()
    finally:
        for task in (op_task, *cancel_tasks):
            if not task.done():
                task.cancel()


class Connection:
    """One side of a transfer socket."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        io_timeout: float = IO_TIMEOUT,
        on_close: Callable[["Connection"], None] | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._cancelled = asyncio.Event()
        self._on_close = on_close
        self._closed = False
        self.io_timeout = io_timeout

        peer = writer.get_extra_info("peername")
        self.remote_address = f"{peer[0]}:{peer[1]}" if peer else ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def cancel(self) -> None:
        """Abort any operation currently blocked on this connection."""
        self._cancelled.set()

    async def _run(
        self,
        operation: Awaitable[T],
        timeout: float | None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        if timeout is None:
            timeout = self.io_timeout
        events = [self._cancelled] if cancel_event is None else [self._cancelled, cancel_event]
        if self.cancelled:
            if asyncio.iscoroutine(operation):
                operation.close()
            raise TransferCancelledError()
        return await race(operation, timeout, *events)

    async def wait_for_response(self, timeout: float) -> str:
        """Read whatever the peer sends next, within ``timeout`` seconds."""
        data = await self._run(self._reader.read(RESPONSE_BUFFER_SIZE), timeout)
        if not data:
            raise ConnectionError("connection closed by peer")
        return data.decode("utf-8", errors="replace")

    async def read_line(
        self,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Read one newline-terminated handshake line."""
        try:
            raw = await self._run(self._reader.readuntil(b"\n"), timeout, cancel_event)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                raise ConnectionError("connection closed by peer") from e
            raise HandshakeError(f"incomplete line: {e.partial!r}") from e
        except asyncio.LimitOverrunError as e:
            raise HandshakeError("handshake line too long") from e
        return decode_line(raw)

    async def read_chunk(
        self,
        size: int,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> bytes:
        """Read up to ``size`` bytes; an empty result means end of stream."""
        return await self._run(self._reader.read(size), timeout, cancel_event)

    async def write(self, data: bytes, timeout: float | None = None) -> None:
        self._writer.write(data)
        await self._run(self._writer.drain(), timeout)

    async def send_with_cancel(
        self,
        data: bytes,
        cancel_event: asyncio.Event,
        timeout: float | None = None,
    ) -> None:
        """Write ``data`` unless ``cancel_event`` fires first."""
        if cancel_event.is_set():
            raise TransferCancelledError()
        self._writer.write(data)
        await self._run(self._writer.drain(), timeout, cancel_event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.cancel()
        self._writer.close()
        try:
            await asyncio.wait_for(self._writer.wait_closed(), timeout=1.0)
        except (OSError, asyncio.TimeoutError):
            # Peer already gone; nothing left to flush.
            pass
        if self._on_close:
            self._on_close(self)


class ConnectionManager:
    """Tracks open transfer connections by remote address."""

    def __init__(self) -> None:
        self._active: dict[str, Connection] = {}

    def new_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        io_timeout: float = IO_TIMEOUT,
    ) -> Connection:
        conn = Connection(reader, writer, io_timeout=io_timeout, on_close=self._forget)
        self._active[conn.remote_address] = conn
        return conn

    def active(self) -> list[Connection]:
        return list(self._active.values())

    async def close_all(self) -> None:
        for conn in self.active():
            await conn.close()

    def _forget(self, conn: Connection) -> None:
        if self._active.get(conn.remote_address) is conn:
            del self._active[conn.remote_address]


async def connect(
    host: str,
    port: int,
    timeout: float = CONNECT_TIMEOUT,
    cancel_event: asyncio.Event | None = None,
    manager: ConnectionManager | None = None,
    io_timeout: float = IO_TIMEOUT,
) -> Connection:
    """Dial ``host:port`` within ``timeout`` seconds."""
    events = [cancel_event] if cancel_event is not None else []
    try:
        reader, writer = await race(asyncio.open_connection(host, port), timeout, *events)
    except ConnectionTimeoutError as e:
        raise ConnectTimeoutError() from e
    except OSError as e:
        raise ConnectFailedError(
            f"couldn't connect to sender - are they still online? ({e})"
        ) from e

    logger.info(f"Connected to sender at {host}:{port}")
    if manager is not None:
        return manager.new_connection(reader, writer, io_timeout=io_timeout)
    return Connection(reader, writer, io_timeout=io_timeout)
