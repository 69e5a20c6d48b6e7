"""Runs the relay application in the background of an asyncio program."""

import asyncio
import logging
import socket

import uvicorn

from config import RELAY_HOST, RELAY_PORT
from main import create_app
from rendezvous.registry import SessionRegistry

logger = logging.getLogger(__name__)


class RelayServer:
    """Start/stop wrapper around a uvicorn server hosting the relay API."""

    def __init__(
        self,
        host: str = RELAY_HOST,
        port: int = RELAY_PORT,
        registry: SessionRegistry | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.app = create_app(registry)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def started(self) -> bool:
        """True once the relay accepts connections."""
        return self.is_running and self._server is not None and self._server.started

    @property
    def registry(self) -> SessionRegistry:
        return self.app.state.registry

    @property
    def messages(self) -> list[str]:
        """Most recent request log lines, oldest first."""
        return list(self.app.state.request_log)

    async def start(self) -> None:
        """Start serving; returns once the socket is bound."""
        if self.is_running:
            return

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
            lifespan="on",
        )
        self._server = uvicorn.Server(config)
        self.app.state.request_log.append(f"Starting server on {self.host}:{self.port}")

        # Bind here so an address in use raises OSError to the caller
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError:
            sock.close()
            raise
        self.port = sock.getsockname()[1]
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise RuntimeError(f"Relay could not start on {self.host}:{self.port}")
            await asyncio.sleep(0.01)
        logger.info(f"Relay listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._server.should_exit = True
        done, _ = await asyncio.wait({self._task}, timeout=5.0)
        if not done:
            self._server.force_exit = True
            await self._task
        self._task = None
        logger.info("Relay stopped")
