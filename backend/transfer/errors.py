"""Exceptions raised by the transfer connection and protocol."""


class TransferError(Exception):
    """Base class for transfer failures, carrying a stable ``code``."""

    code = "TRANSFER_ERROR"
    default_message = "Transfer failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ConnectionTimeoutError(TransferError):
    code = "CONNECTION_TIMEOUT"
    default_message = "Connection timed out - please try again"


class ConnectTimeoutError(ConnectionTimeoutError):
    default_message = "Timed out connecting to sender - are they still online?"


class ConnectFailedError(TransferError):
    code = "CONNECT_FAILED"
    default_message = "Couldn't connect to sender - are they still online?"


class HandshakeError(TransferError):
    """The peer sent something the handshake does not allow."""

    code = "HANDSHAKE_ERROR"
    default_message = "Unexpected handshake message"


class TransferRejectedError(TransferError):
    code = "TRANSFER_REJECTED"
    default_message = "Transfer was rejected by receiver"


class TransferCancelledError(TransferError):
    code = "TRANSFER_CANCELLED"
    default_message = "transfer cancelled"


class TransferFailedError(TransferError):
    """A failure wrapped with the operation that hit it.

    ``code`` follows the cause when the cause has one, so a consumer can
    still tell e.g. an unreachable relay from an unknown session.
    """

    code = "IO_FAILURE"

    def __init__(self, context: str, cause: BaseException | None = None) -> None:
        self.context = context
        self.cause = cause
        cause_code = getattr(cause, "code", None)
        if isinstance(cause_code, str):
            self.code = cause_code
        super().__init__(f"{context}: {cause}" if cause is not None else context)
        self.__cause__ = cause


# Failures of a single socket or file operation; cancellation is not one.
IO_ERRORS = (OSError, ConnectionTimeoutError, HandshakeError)


__all__ = [
    "IO_ERRORS",
    "ConnectFailedError",
    "ConnectTimeoutError",
    "ConnectionTimeoutError",
    "HandshakeError",
    "TransferCancelledError",
    "TransferError",
    "TransferFailedError",
    "TransferRejectedError",
]
