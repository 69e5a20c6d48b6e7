"""
Receiver side of a transfer.

Joins a relay session, dials the sender, reads the file announcement, asks
the caller whether to take it and streams it into the save directory.

A cancelled receive deletes the partial file. A receive that fails on I/O
keeps whatever was written so far.
"""

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable
from typing import BinaryIO

from config import (
    ACCEPT_TIMEOUT,
    CHUNK_SIZE,
    CONNECT_TIMEOUT,
    DEFAULT_SAVE_DIR,
    HANDSHAKE_TIMEOUT,
    IO_TIMEOUT,
    TRANSFER_HOST,
    TRANSFER_PORT,
)
from rendezvous.client import RelayClient
from rendezvous.errors import SessionError
from rendezvous.models import Session
from transfer.connection import Connection, ConnectionManager, connect, race
from transfer.errors import (
    IO_ERRORS,
    ConnectionTimeoutError,
    HandshakeError,
    TransferCancelledError,
    TransferError,
    TransferFailedError,
    TransferRejectedError,
)
from transfer.models import FileMetadata, TransferState
from transfer.progress import ProgressChannel, ProgressTracker
from transfer.protocol import ACCEPTED, READY, REJECTED, encode_line, parse_metadata

logger = logging.getLogger(__name__)

AcceptCallback = Callable[[FileMetadata], Awaitable[bool]]


async def start_receiver(
    session_id: str,
    relay: RelayClient,
    *,
    host: str = TRANSFER_HOST,
    port: int = TRANSFER_PORT,
    connect_timeout: float = CONNECT_TIMEOUT,
    io_timeout: float = IO_TIMEOUT,
    cancel_event: asyncio.Event | None = None,
    connections: ConnectionManager | None = None,
) -> tuple[Session, Connection]:
    """Join ``session_id`` through the relay and dial the sender.

    Raises a SessionError subclass for relay problems (the id is checked
    locally first) and ConnectFailedError/ConnectTimeoutError for dialing.
    """
    session = await relay.join_session(session_id)
    conn = await connect_to_sender(
        host,
        port,
        timeout=connect_timeout,
        cancel_event=cancel_event,
        connections=connections,
        io_timeout=io_timeout,
    )
    return session, conn


async def connect_to_sender(
    host: str = TRANSFER_HOST,
    port: int = TRANSFER_PORT,
    *,
    timeout: float = CONNECT_TIMEOUT,
    cancel_event: asyncio.Event | None = None,
    connections: ConnectionManager | None = None,
    io_timeout: float = IO_TIMEOUT,
) -> Connection:
    logger.info(f"Dialing sender at {host}:{port}")
    return await connect(
        host,
        port,
        timeout=timeout,
        cancel_event=cancel_event,
        manager=connections,
        io_timeout=io_timeout,
    )


async def receive_metadata(
    conn: Connection,
    timeout: float = HANDSHAKE_TIMEOUT,
    cancel_event: asyncio.Event | None = None,
) -> FileMetadata:
    """Send the ready signal and parse the sender's ``name|size`` line."""
    try:
        await conn.write(encode_line(READY), timeout)
    except IO_ERRORS as e:
        raise TransferFailedError("failed to send ready signal", e) from e

    try:
        line = await conn.read_line(timeout, cancel_event)
    except IO_ERRORS as e:
        raise TransferFailedError("failed to read file info", e) from e

    return parse_metadata(line, sender_address=conn.remote_address)


async def reject_transfer(conn: Connection) -> None:
    """Tell the sender no, then hang up."""
    try:
        await conn.write(encode_line(REJECTED))
    finally:
        await conn.close()


def open_destination(save_dir: str, name: str) -> tuple[str, BinaryIO]:
    """Create a new file for ``name`` in ``save_dir`` without overwriting.

    An existing name gets a unix timestamp before its extension, e.g.
    ``report_1700000000.pdf``.
    """
    base = os.path.basename(name.replace("\\", "/"))
    if base in ("", ".", ".."):
        raise HandshakeError(f"invalid file name: {name!r}")

    stem, ext = os.path.splitext(base)
    candidates = [base, f"{stem}_{int(time.time())}{ext}"]
    attempt = 1
    while True:
        if candidates:
            candidate = candidates.pop(0)
        else:
            candidate = f"{stem}_{int(time.time())}_{attempt}{ext}"
            attempt += 1
        path = os.path.join(save_dir, candidate)
        try:
            return path, open(path, "xb")
        except FileExistsError:
            continue


async def receive_file(
    conn: Connection,
    metadata: FileMetadata,
    channel: ProgressChannel,
    cancel_event: asyncio.Event,
    *,
    save_dir: str = DEFAULT_SAVE_DIR,
    chunk_size: int = CHUNK_SIZE,
    session_id: str = "",
) -> str | None:
    """Accept an announced file and stream it to disk.

    Returns the path written, or None if nothing was kept.
    """
    tracker = ProgressTracker(session_id=session_id, total_bytes=metadata.size)
    try:
        await channel.send(tracker.event(TransferState.INITIALIZING))
        return await _accept_and_stream(
            conn, metadata, channel, cancel_event, tracker, save_dir, chunk_size
        )
    finally:
        await conn.close()
        await channel.close()


async def receive(
    session_id: str,
    relay: RelayClient,
    channel: ProgressChannel,
    cancel_event: asyncio.Event,
    accept_callback: AcceptCallback,
    *,
    save_dir: str = DEFAULT_SAVE_DIR,
    host: str = TRANSFER_HOST,
    port: int = TRANSFER_PORT,
    chunk_size: int = CHUNK_SIZE,
    connect_timeout: float = CONNECT_TIMEOUT,
    io_timeout: float = IO_TIMEOUT,
    accept_timeout: float = ACCEPT_TIMEOUT,
    connections: ConnectionManager | None = None,
) -> str | None:
    """
    Run the whole receiving flow for one session id.

    Args:
        accept_callback: async fn(metadata) -> bool, asked once before any
            byte is written. Not answering within ``accept_timeout`` counts
            as a rejection.

    Returns:
        The path of the received file, or None.
    """
    tracker = ProgressTracker(session_id=session_id)
    conn: Connection | None = None

    try:
        await channel.send(tracker.event(TransferState.INITIALIZING))

        try:
            _, conn = await start_receiver(
                session_id,
                relay,
                host=host,
                port=port,
                connect_timeout=connect_timeout,
                io_timeout=io_timeout,
                cancel_event=cancel_event,
                connections=connections,
            )
        except SessionError as e:
            await _fail(channel, tracker, TransferFailedError("failed to join session", e))
            return None
        except TransferCancelledError:
            raise
        except (TransferError, OSError) as e:
            await _fail(channel, tracker, TransferFailedError("failed to connect to sender", e))
            return None

        try:
            metadata = await receive_metadata(conn, cancel_event=cancel_event)
        except (HandshakeError, TransferFailedError) as e:
            await _fail(channel, tracker, e)
            return None
        tracker.total_bytes = metadata.size
        logger.info(
            f"Incoming '{metadata.name}' ({metadata.size} bytes) from {metadata.sender_address}"
        )

        try:
            accepted = await race(accept_callback(metadata), accept_timeout, cancel_event)
        except ConnectionTimeoutError:
            logger.info(f"No answer for '{metadata.name}' within {accept_timeout}s")
            accepted = False

        if not accepted:
            await reject_transfer(conn)
            logger.info(f"Rejected '{metadata.name}'")
            await channel.send(tracker.event(
                TransferState.CANCELLED, TransferRejectedError("transfer rejected")
            ))
            return None

        return await _accept_and_stream(
            conn, metadata, channel, cancel_event, tracker, save_dir, chunk_size
        )

    except (TransferCancelledError, asyncio.CancelledError):
        logger.info(f"Receive for session {session_id} cancelled")
        await channel.send(tracker.event(TransferState.CANCELLED, TransferCancelledError()))
        return None
    except Exception as e:
        logger.error(f"Receive error for session {session_id}: {e}", exc_info=True)
        await _fail(channel, tracker, TransferFailedError("unexpected error", e))
        return None
    finally:
        if conn:
            await conn.close()
        await channel.close()


async def _accept_and_stream(
    conn: Connection,
    metadata: FileMetadata,
    channel: ProgressChannel,
    cancel_event: asyncio.Event,
    tracker: ProgressTracker,
    save_dir: str,
    chunk_size: int,
) -> str | None:
    """Say "accepted" and copy exactly ``metadata.size`` bytes to a new file.

    Emits the terminal event itself; never raises.
    """
    path: str | None = None
    f: BinaryIO | None = None

    try:
        try:
            await conn.write(encode_line(ACCEPTED))
        except IO_ERRORS as e:
            raise TransferFailedError("failed to send accept signal", e) from e

        try:
            path, f = await asyncio.to_thread(open_destination, save_dir, metadata.name)
        except (OSError, HandshakeError) as e:
            raise TransferFailedError(f"failed to create file '{metadata.name}'", e) from e
        tracker.start_stream()
        await channel.send(tracker.event(TransferState.RECEIVING))

        remaining = metadata.size
        while remaining > 0:
            if cancel_event.is_set():
                raise TransferCancelledError()

            chunk = await conn.read_chunk(min(chunk_size, remaining), cancel_event=cancel_event)
            if not chunk:
                raise ConnectionError(
                    f"connection closed after {tracker.bytes_moved} of {metadata.size} bytes"
                )

            try:
                await asyncio.to_thread(f.write, chunk)
            except OSError as e:
                raise TransferFailedError(f"failed to write to file '{path}'", e) from e

            remaining -= len(chunk)
            tracker.record(len(chunk))
            await channel.send(tracker.event(TransferState.RECEIVING))

        f.close()
        logger.info(f"Received '{metadata.name}' into {path} ({tracker.bytes_moved} bytes)")
        await channel.send(tracker.event(TransferState.COMPLETED))
        return path

    except (TransferCancelledError, asyncio.CancelledError):
        if f is not None:
            f.close()
            _remove_partial(path)
        logger.info(f"Receive of '{metadata.name}' cancelled")
        await channel.send(tracker.event(TransferState.CANCELLED, TransferCancelledError()))
        return None
    except TransferFailedError as e:
        await _fail(channel, tracker, e)
    except IO_ERRORS as e:
        await _fail(channel, tracker, TransferFailedError("failed to read from connection", e))
    except Exception as e:
        logger.error(f"Receive error for '{metadata.name}': {e}", exc_info=True)
        await _fail(channel, tracker, TransferFailedError("unexpected error", e))
    finally:
        # Partial data stays on disk after a failure.
        if f is not None and not f.closed:
            f.close()
    return path if path and os.path.exists(path) else None


def _remove_partial(path: str | None) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


async def _fail(channel: ProgressChannel, tracker: ProgressTracker, error: Exception) -> None:
    logger.error(f"Receive failed: {error}")
    await channel.send(tracker.event(TransferState.ERROR, error))
