"""
Sender side of a transfer.

Creates a relay session, waits for exactly one receiver on the transfer
port, runs the handshake and streams the file. Every outcome, including
failures, is reported as the last event on the progress channel, which is
closed when the task ends.
"""

import asyncio
import logging
import os

from config import (
    ACCEPT_TIMEOUT,
    CHUNK_SIZE,
    HANDSHAKE_TIMEOUT,
    IO_TIMEOUT,
    TRANSFER_BIND_HOST,
    TRANSFER_PORT,
)
from rendezvous.client import RelayClient
from rendezvous.errors import SessionError
from transfer.connection import Connection, ConnectionManager, race
from transfer.errors import (
    IO_ERRORS,
    HandshakeError,
    TransferCancelledError,
    TransferFailedError,
    TransferRejectedError,
)
from transfer.models import TransferState
from transfer.progress import ProgressChannel, ProgressTracker
from transfer.protocol import ACCEPTED, READY, encode_metadata, is_framable_name

logger = logging.getLogger(__name__)


def check_source(file_path: str) -> int:
    """Return the size of a readable regular file, or raise OSError."""
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"no such file: {file_path}")
    with open(file_path, "rb"):
        pass
    return os.path.getsize(file_path)


async def send_file(
    file_path: str,
    channel: ProgressChannel,
    cancel_event: asyncio.Event,
    relay: RelayClient,
    *,
    bind_host: str = TRANSFER_BIND_HOST,
    port: int = TRANSFER_PORT,
    chunk_size: int = CHUNK_SIZE,
    io_timeout: float = IO_TIMEOUT,
    handshake_timeout: float = HANDSHAKE_TIMEOUT,
    decision_timeout: float = ACCEPT_TIMEOUT + HANDSHAKE_TIMEOUT,
    connections: ConnectionManager | None = None,
) -> None:
    """
    Offer a single file to whoever joins the new session.

    Args:
        file_path: Local path of the file to send.
        channel: Receives every ProgressEvent; closed on return.
        cancel_event: Set by the caller to abort the transfer.
        relay: Client used to create the session.
        port: TCP port the receiver will dial (0 picks a free port).
    """
    tracker = ProgressTracker()
    server: asyncio.Server | None = None
    conn: Connection | None = None

    try:
        await channel.send(tracker.event(TransferState.INITIALIZING))
        if cancel_event.is_set():
            raise TransferCancelledError()

        try:
            file_size = await asyncio.to_thread(check_source, file_path)
        except OSError as e:
            await _fail(channel, tracker, TransferFailedError("failed to access file", e))
            return
        file_name = os.path.basename(file_path)
        if not is_framable_name(file_name):
            await _fail(channel, tracker, TransferFailedError(
                "invalid file name", ValueError(f"{file_name!r} contains '|' or a newline")
            ))
            return
        tracker.total_bytes = file_size

        try:
            session = await relay.create_session()
        except SessionError as e:
            await _fail(channel, tracker, TransferFailedError("failed to create session", e))
            return
        tracker.session_id = session.session_id

        accepted: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            # One receiver per session; anyone else is turned away.
            if accepted.done():
                logger.warning(
                    f"Ignoring extra connection from {writer.get_extra_info('peername')}"
                )
                writer.close()
                return
            accepted.set_result((reader, writer))

        try:
            server = await asyncio.start_server(on_connect, bind_host, port)
        except OSError as e:
            await _fail(channel, tracker, TransferFailedError("failed to start listener", e))
            return

        await channel.send(tracker.event(TransferState.WAITING_FOR_RECEIVER))
        logger.info(
            f"Session {session.session_id} waiting for receiver on port "
            f"{server.sockets[0].getsockname()[1]}"
        )

        try:
            reader, writer = await race(accepted, None, cancel_event)
        finally:
            server.close()

        if connections is not None:
            conn = connections.new_connection(reader, writer, io_timeout=io_timeout)
        else:
            conn = Connection(reader, writer, io_timeout=io_timeout)
        logger.info(f"Receiver connected from {conn.remote_address}")

        # --- Handshake ---
        try:
            response = await conn.read_line(handshake_timeout, cancel_event)
        except IO_ERRORS as e:
            await _fail(channel, tracker, TransferFailedError("error receiving ready signal", e))
            return
        if response != READY:
            await _fail(channel, tracker, HandshakeError(
                f"unexpected response from receiver: {response!r}"
            ))
            return

        try:
            await conn.write(encode_metadata(file_name, file_size))
            # The receiver may be waiting on a person to accept.
            response = await conn.read_line(decision_timeout, cancel_event)
        except IO_ERRORS as e:
            await _fail(channel, tracker, TransferFailedError("error receiving response", e))
            return
        if response != ACCEPTED:
            logger.info(f"Transfer of '{file_name}' rejected by receiver")
            await channel.send(
                tracker.event(TransferState.CANCELLED, TransferRejectedError())
            )
            return

        # --- Stream ---
        tracker.start_stream()
        await channel.send(tracker.event(TransferState.TRANSFERRING))

        with open(file_path, "rb") as f:
            while True:
                if cancel_event.is_set():
                    raise TransferCancelledError()

                try:
                    chunk = await asyncio.to_thread(f.read, chunk_size)
                except OSError as e:
                    await _fail(channel, tracker, TransferFailedError("error reading file", e))
                    return
                if not chunk:
                    break

                try:
                    await conn.send_with_cancel(chunk, cancel_event)
                except IO_ERRORS as e:
                    await _fail(channel, tracker, TransferFailedError("error sending file", e))
                    return

                tracker.record(len(chunk))
                await channel.send(tracker.event(TransferState.TRANSFERRING))

        # Closing delivers end-of-stream to the receiver.
        await conn.close()
        logger.info(f"Sent '{file_name}' ({tracker.bytes_moved} bytes)")
        await channel.send(tracker.event(TransferState.COMPLETED))

    except (TransferCancelledError, asyncio.CancelledError):
        logger.info(f"Send of {file_path} cancelled")
        await channel.send(
            tracker.event(TransferState.CANCELLED, TransferCancelledError())
        )
    except Exception as e:
        logger.error(f"Send error for {file_path}: {e}", exc_info=True)
        await _fail(channel, tracker, TransferFailedError("unexpected error", e))
    finally:
        if conn:
            await conn.close()
        if server:
            server.close()
        await channel.close()


async def _fail(channel: ProgressChannel, tracker: ProgressTracker, error: Exception) -> None:
    logger.error(f"Send failed: {error}")
    await channel.send(tracker.event(TransferState.ERROR, error))
