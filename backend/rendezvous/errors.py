"""Exceptions raised while creating, joining or leaving sessions."""


class SessionError(Exception):
    """Base class for rendezvous failures.

    Each error carries a stable ``code`` so callers can branch on the kind
    of failure, and a message that can be shown to a user verbatim.
    """

    code = "SESSION_ERROR"
    default_message = "Session error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class SessionNotFoundError(SessionError):
    code = "SESSION_NOT_FOUND"
    default_message = "Session not found - check the ID and try again"


class SessionConflictError(SessionError):
    code = "SESSION_CONFLICT"
    default_message = "Session already has a receiver"


class InvalidSessionIdError(SessionError):
    code = "INVALID_SESSION"
    default_message = "Please enter a valid session ID"


class RelayUnavailableError(SessionError):
    """The broker could not be reached at all (as opposed to a bad session)."""

    code = "RELAY_SERVER_DOWN"
    default_message = "Could not connect to relay server - is it running?"


class UnexpectedRelayResponseError(SessionError):
    code = "UNEXPECTED_ERROR"
    default_message = "Unexpected response from relay server - please try again"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


__all__ = [
    "InvalidSessionIdError",
    "RelayUnavailableError",
    "SessionConflictError",
    "SessionError",
    "SessionNotFoundError",
    "UnexpectedRelayResponseError",
]
