from __future__ import annotations

import asyncio
import time

import pytest

from conftest import stream_pair, unused_port
from transfer.connection import Connection, ConnectionManager, connect, race
from transfer.errors import (
    ConnectFailedError,
    ConnectionTimeoutError,
    HandshakeError,
    TransferCancelledError,
)


def test_race_returns_result_times_out_or_cancels() -> None:
    async def scenario() -> None:
        assert await race(asyncio.sleep(0, result="done"), 1.0) == "done"

        with pytest.raises(ConnectionTimeoutError):
            await race(asyncio.sleep(5), 0.05)

        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, event.set)
        with pytest.raises(TransferCancelledError):
            await race(asyncio.sleep(5), 5.0, event)

    asyncio.run(scenario())


def test_wait_for_response_times_out() -> None:
    async def scenario() -> None:
        (reader, writer), (_, peer_writer), server = await stream_pair()
        conn = Connection(reader, writer)
        try:
            started = time.monotonic()
            with pytest.raises(ConnectionTimeoutError):
                await conn.wait_for_response(0.1)
            assert time.monotonic() - started < 2.0
        finally:
            await conn.close()
            peer_writer.close()
            server.close()

    asyncio.run(scenario())


def test_read_line_and_response() -> None:
    async def scenario() -> None:
        (reader, writer), (_, peer_writer), server = await stream_pair()
        conn = Connection(reader, writer)
        try:
            peer_writer.write(b"ready\nhello")
            await peer_writer.drain()

            assert await conn.read_line(1.0) == "ready"
            assert await conn.wait_for_response(1.0) == "hello"
        finally:
            await conn.close()
            peer_writer.close()
            server.close()

    asyncio.run(scenario())


def test_read_line_reports_truncated_line_and_closed_peer() -> None:
    async def scenario() -> None:
        (reader, writer), (_, peer_writer), server = await stream_pair()
        conn = Connection(reader, writer)
        try:
            peer_writer.write(b"half a line")
            await peer_writer.drain()
            peer_writer.close()

            with pytest.raises(HandshakeError):
                await conn.read_line(1.0)
            with pytest.raises(ConnectionError):
                await conn.read_line(1.0)
        finally:
            await conn.close()
            server.close()

    asyncio.run(scenario())


def test_send_with_cancel_aborts_a_blocked_write() -> None:
    async def scenario() -> None:
        (reader, writer), (_, peer_writer), server = await stream_pair()
        conn = Connection(reader, writer)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)
        try:
            started = time.monotonic()
            # The peer never reads, so the drain blocks until cancelled.
            with pytest.raises(TransferCancelledError):
                await conn.send_with_cancel(b"\0" * (32 * 1024 * 1024), cancel, timeout=10.0)
            assert time.monotonic() - started < 5.0
        finally:
            await conn.close()
            peer_writer.close()
            server.close()

    asyncio.run(scenario())


def test_cancelled_connection_refuses_further_io() -> None:
    async def scenario() -> None:
        (reader, writer), (_, peer_writer), server = await stream_pair()
        conn = Connection(reader, writer)
        try:
            conn.cancel()
            with pytest.raises(TransferCancelledError):
                await conn.read_chunk(10, timeout=1.0)
        finally:
            await conn.close()
            peer_writer.close()
            server.close()

    asyncio.run(scenario())


def test_manager_tracks_connections_until_closed() -> None:
    async def scenario() -> None:
        manager = ConnectionManager()
        (reader, writer), (_, peer_writer), server = await stream_pair()

        conn = manager.new_connection(reader, writer)
        assert manager.active() == [conn]
        assert conn.remote_address.startswith("127.0.0.1:")

        await manager.close_all()
        assert manager.active() == []
        assert conn.closed
        await conn.close()

        peer_writer.close()
        server.close()

    asyncio.run(scenario())


def test_connect_to_closed_port_fails() -> None:
    async def scenario() -> None:
        with pytest.raises(ConnectFailedError) as excinfo:
            await connect("127.0.0.1", unused_port(), timeout=2.0)
        assert excinfo.value.code == "CONNECT_FAILED"

    asyncio.run(scenario())


def test_connect_registers_with_manager() -> None:
    async def scenario() -> None:
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        manager = ConnectionManager()

        conn = await connect("127.0.0.1", port, timeout=2.0, manager=manager)
        assert manager.active() == [conn]

        await conn.close()
        assert manager.active() == []
        server.close()

    asyncio.run(scenario())
