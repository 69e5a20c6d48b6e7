from __future__ import annotations

import asyncio
import socket

import httpx
import pytest
from fastapi import FastAPI

from main import create_app
from rendezvous.client import RelayClient


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def relay_client_for(app: FastAPI) -> RelayClient:
    """A client whose requests are served in-process by ``app``."""
    return RelayClient("http://relay.test", transport=httpx.ASGITransport(app=app))


async def stream_pair() -> tuple[
    tuple[asyncio.StreamReader, asyncio.StreamWriter],
    tuple[asyncio.StreamReader, asyncio.StreamWriter],
    asyncio.Server,
]:
    """Two connected loopback stream ends: (client, server side)."""
    accepted: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        accepted.set_result((reader, writer))

    server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    client = await asyncio.open_connection("127.0.0.1", port)
    peer = await asyncio.wait_for(accepted, timeout=2.0)
    return client, peer, server


@pytest.fixture
def free_port() -> int:
    return unused_port()


@pytest.fixture
def relay_app() -> FastAPI:
    return create_app()
