from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import FastAPI

from conftest import relay_client_for
from rendezvous.client import RelayClient
from rendezvous.errors import (
    InvalidSessionIdError,
    RelayUnavailableError,
    SessionConflictError,
    SessionNotFoundError,
    UnexpectedRelayResponseError,
)

SESSION_JSON = {"session_id": "abc123", "sender_id": "def456", "receiver_id": ""}


def _client(handler) -> RelayClient:
    return RelayClient("http://relay.test", transport=httpx.MockTransport(handler))


def test_create_session_posts_to_new_and_remembers_it() -> None:
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json=SESSION_JSON)

    client = _client(handler)
    session = asyncio.run(client.create_session())

    assert seen == [("POST", "/new")]
    assert session.session_id == "abc123"
    assert client.known_session("abc123") == session


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (404, SessionNotFoundError),
        (409, SessionConflictError),
        (400, InvalidSessionIdError),
        (500, UnexpectedRelayResponseError),
    ],
)
def test_join_maps_status_codes(status: int, error_type: type[Exception]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"detail": "This session already has an active receiver"})

    client = _client(handler)

    with pytest.raises(error_type):
        asyncio.run(client.join_session("abc123"))
    assert client.known_session("abc123") is None


def test_conflict_keeps_relay_detail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"detail": "This session already has an active receiver"})

    with pytest.raises(SessionConflictError) as excinfo:
        asyncio.run(_client(handler).join_session("abc123"))

    assert excinfo.value.message == "This session already has an active receiver"
    assert excinfo.value.code == "SESSION_CONFLICT"


def test_unreachable_relay_is_reported_as_down() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)

    with pytest.raises(RelayUnavailableError) as excinfo:
        asyncio.run(client.create_session())
    assert excinfo.value.code == "RELAY_SERVER_DOWN"


@pytest.mark.parametrize("session_id", ["", "has space", "x" * 65, "a/b"])
def test_malformed_ids_never_reach_the_relay(session_id: str) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=SESSION_JSON)

    with pytest.raises(InvalidSessionIdError):
        asyncio.run(_client(handler).join_session(session_id))
    assert calls == []


def test_leave_with_empty_id_is_a_no_op() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert asyncio.run(_client(handler).leave_session("")) is None


def test_garbled_session_body_is_unexpected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    with pytest.raises(UnexpectedRelayResponseError):
        asyncio.run(_client(handler).create_session())


def test_create_join_leave_against_relay_app(relay_app: FastAPI) -> None:
    sender = relay_client_for(relay_app)
    receiver = relay_client_for(relay_app)

    async def scenario() -> None:
        session = await sender.create_session()

        joined = await receiver.join_session(session.session_id)
        assert joined.receiver_id != ""
        assert receiver.known_session(session.session_id) is not None

        with pytest.raises(SessionConflictError):
            await relay_client_for(relay_app).join_session(session.session_id)

        left = await receiver.leave_session(session.session_id)
        assert left is not None
        assert left.receiver_id == ""
        assert receiver.known_session(session.session_id) is None

        with pytest.raises(SessionConflictError):
            await receiver.leave_session(session.session_id)

    asyncio.run(scenario())
