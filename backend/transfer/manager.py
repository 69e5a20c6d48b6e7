"""
Transfer Manager: starts transfers as background tasks.

Each transfer is represented by a TransferHandle that owns everything about
it: the task, its progress channel, its cancel signal and what is known so
far (session id, metadata, destination). Callers keep the handle; nothing is
shared through module state.
"""

import asyncio
import logging
import os
import uuid

from config import (
    DEFAULT_SAVE_DIR,
    TRANSFER_BIND_HOST,
    TRANSFER_HOST,
    TRANSFER_PORT,
)
from rendezvous.client import RelayClient
from rendezvous.errors import SessionError
from transfer.connection import ConnectionManager
from transfer.models import FileMetadata, ProgressEvent, TransferDirection, TransferState
from transfer.progress import ProgressChannel
from transfer.receiver import AcceptCallback, receive
from transfer.sender import send_file

logger = logging.getLogger(__name__)


class TransferHandle:
    """A running (or finished) send or receive."""

    def __init__(self, direction: TransferDirection) -> None:
        self.transfer_id = str(uuid.uuid4())
        self.direction = direction
        self.channel = ProgressChannel()
        self.cancel_event = asyncio.Event()
        self.task: asyncio.Task | None = None
        self.metadata: FileMetadata | None = None
        self.destination: str | None = None

    @property
    def last_event(self) -> ProgressEvent | None:
        return self.channel.last_event

    @property
    def state(self) -> TransferState:
        event = self.channel.last_event
        return event.state if event else TransferState.INITIALIZING

    @property
    def session_id(self) -> str:
        event = self.channel.last_event
        return event.session_id if event else ""

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def cancel(self) -> None:
        """Ask the transfer to stop at its next chunk or blocking call."""
        self.cancel_event.set()

    def events(self) -> ProgressChannel:
        """Async-iterate the events; iteration ends when the transfer does."""
        return self.channel

    async def wait(self) -> None:
        if self.task is not None:
            await self.task

    async def drain(self) -> list[ProgressEvent]:
        """Consume the remaining events and wait for the task to finish."""
        events = [event async for event in self.channel]
        await self.wait()
        return events


class TransferManager:
    """Manages all active and finished transfers of this process."""

    def __init__(
        self,
        relay: RelayClient | None = None,
        save_dir: str = DEFAULT_SAVE_DIR,
        transfer_host: str = TRANSFER_HOST,
        transfer_port: int = TRANSFER_PORT,
        bind_host: str = TRANSFER_BIND_HOST,
    ) -> None:
        self._relay = relay or RelayClient()
        self._transfers: dict[str, TransferHandle] = {}
        self._save_dir = save_dir
        self._transfer_host = transfer_host
        self._transfer_port = transfer_port
        self._bind_host = bind_host
        self.connections = ConnectionManager()

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    def get_transfers(self) -> list[TransferHandle]:
        return list(self._transfers.values())

    def get(self, transfer_id: str) -> TransferHandle | None:
        return self._transfers.get(transfer_id)

    def start_send(self, file_path: str, **options) -> TransferHandle:
        """Offer ``file_path``; the session id arrives with the
        WAITING_FOR_RECEIVER event."""
        handle = TransferHandle(TransferDirection.SENDING)
        handle.task = asyncio.create_task(
            send_file(
                file_path,
                handle.channel,
                handle.cancel_event,
                self._relay,
                bind_host=self._bind_host,
                port=self._transfer_port,
                connections=self.connections,
                **options,
            )
        )
        self._transfers[handle.transfer_id] = handle
        logger.info(f"Queued send of {file_path} as {handle.transfer_id}")
        return handle

    def start_receive(
        self, session_id: str, accept_callback: AcceptCallback, **options
    ) -> TransferHandle:
        """Join ``session_id`` and receive its file into the save directory."""
        handle = TransferHandle(TransferDirection.RECEIVING)

        async def decide(metadata: FileMetadata) -> bool:
            handle.metadata = metadata
            return await accept_callback(metadata)

        handle.task = asyncio.create_task(
            self._receive_task(handle, session_id, decide, options)
        )
        self._transfers[handle.transfer_id] = handle
        logger.info(f"Queued receive for session {session_id} as {handle.transfer_id}")
        return handle

    async def _receive_task(
        self,
        handle: TransferHandle,
        session_id: str,
        accept_callback: AcceptCallback,
        options: dict,
    ) -> None:
        handle.destination = await receive(
            session_id,
            self._relay,
            handle.channel,
            handle.cancel_event,
            accept_callback,
            save_dir=self._save_dir,
            host=self._transfer_host,
            port=self._transfer_port,
            connections=self.connections,
            **options,
        )

        # Free the session so it can be joined again.
        if self._relay.known_session(session_id) is None:
            return
        try:
            await self._relay.leave_session(session_id)
        except SessionError as e:
            logger.warning(f"Couldn't leave session {session_id} cleanly: {e}")

    def cancel_transfer(self, transfer_id: str) -> None:
        handle = self._transfers.get(transfer_id)
        if handle and not handle.state.is_terminal:
            handle.cancel()

    async def stop(self) -> None:
        """Cancel every unfinished transfer and wait for it to wind down."""
        pending = [h for h in self._transfers.values() if not h.done]
        for handle in pending:
            handle.cancel()
        # Nobody may be listening any more; drain so producers can finish.
        await asyncio.gather(*(handle.drain() for handle in pending), return_exceptions=True)
        await self.connections.close_all()
        logger.info("Transfer manager stopped")
