"""HTTP client for the relay's create/join/leave endpoints."""

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from config import RELAY_TIMEOUT, relay_base_url
from rendezvous.errors import (
    InvalidSessionIdError,
    RelayUnavailableError,
    SessionConflictError,
    SessionNotFoundError,
    UnexpectedRelayResponseError,
)
from rendezvous.models import Session, is_valid_session_id

logger = logging.getLogger(__name__)


class RelayClient:
    """Talks to the relay on behalf of a sender or a receiver.

    Transport failures are reported as ``RelayUnavailableError`` so callers
    can tell an unreachable relay apart from an unknown session.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float = RELAY_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or relay_base_url()).strip().rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._sessions: dict[str, Session] = {}

    @property
    def base_url(self) -> str:
        return self._base_url

    def known_session(self, session_id: str) -> Session | None:
        """Return a session this client created or joined."""
        return self._sessions.get(session_id)

    async def create_session(self) -> Session:
        """Call `/new` and return the new session."""
        response = await self._request("POST", "/new")
        if response.status_code != 200:
            raise self._unexpected(response)
        session = self._parse_session(response)
        self._sessions[session.session_id] = session
        return session

    async def join_session(self, session_id: str) -> Session:
        """Call `/join/{session_id}`."""
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError()

        response = await self._request("GET", f"/join/{quote(session_id, safe='')}")
        self._raise_for_session_status(response)
        session = self._parse_session(response)
        self._sessions[session.session_id] = session
        return session

    async def leave_session(self, session_id: str) -> Session | None:
        """Call `/leave/{session_id}`; an empty id means nothing was joined."""
        if not session_id:
            return None
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError()

        response = await self._request("GET", f"/leave/{quote(session_id, safe='')}")
        self._sessions.pop(session_id, None)
        self._raise_for_session_status(response)
        return self._parse_session(response)

    async def _request(self, method: str, path: str) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as http_client:
                return await http_client.request(method, url)
        except httpx.HTTPError as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise RelayUnavailableError() from exc

    def _raise_for_session_status(self, response: httpx.Response) -> None:
        if response.status_code == 200:
            return
        if response.status_code == 404:
            raise SessionNotFoundError()
        if response.status_code == 409:
            raise SessionConflictError(self._detail_from_response(response))
        if response.status_code == 400:
            raise InvalidSessionIdError()
        raise self._unexpected(response)

    def _parse_session(self, response: httpx.Response) -> Session:
        try:
            return Session.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UnexpectedRelayResponseError(
                "Invalid session data - please try again",
                status_code=response.status_code,
            ) from exc

    def _unexpected(self, response: httpx.Response) -> UnexpectedRelayResponseError:
        return UnexpectedRelayResponseError(
            f"Unexpected error (status {response.status_code}) - please try again",
            status_code=response.status_code,
        )

    def _detail_from_response(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text.strip() or "<no response body>"
        if isinstance(payload, dict) and isinstance(payload.get("detail"), str):
            return payload["detail"]
        return str(payload)


__all__ = ["RelayClient"]
