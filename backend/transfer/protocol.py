"""
Wire format of the sender/receiver handshake.

    receiver -> sender   ready\n
    sender   -> receiver <name>|<size>\n
    receiver -> sender   accepted\n  or  rejected\n
    sender   -> receiver <size> raw bytes, then EOF

Names are not escaped: a name containing "|" or a newline cannot be framed
and is refused by ``encode_metadata``.
"""

from transfer.errors import HandshakeError
from transfer.models import FileMetadata

READY = "ready"
ACCEPTED = "accepted"
REJECTED = "rejected"

FIELD_SEPARATOR = "|"
LINE_END = "\n"
ENCODING = "utf-8"


def encode_line(text: str) -> bytes:
    return (text + LINE_END).encode(ENCODING)


def decode_line(raw: bytes) -> str:
    """Decode one received line, dropping only the line terminator."""
    try:
        return raw.decode(ENCODING).rstrip("\r\n")
    except UnicodeDecodeError as e:
        raise HandshakeError(f"invalid handshake line: {e}") from e


def is_framable_name(name: str) -> bool:
    return bool(name) and not any(c in name for c in (FIELD_SEPARATOR, "\n", "\r"))


def encode_metadata(name: str, size: int) -> bytes:
    if not is_framable_name(name):
        raise ValueError(f"file name cannot be sent: {name!r}")
    if size < 0:
        raise ValueError(f"file size cannot be negative: {size}")
    return encode_line(f"{name}{FIELD_SEPARATOR}{size}")


def parse_metadata(line: str, sender_address: str = "") -> FileMetadata:
    """Parse a ``name|size`` line into FileMetadata."""
    parts = line.rstrip("\r\n").split(FIELD_SEPARATOR)
    if len(parts) != 2 or not parts[0]:
        raise HandshakeError(f"invalid file info: {line!r}")

    name, raw_size = parts
    if not (raw_size.isascii() and raw_size.isdigit()):
        raise HandshakeError(f"failed to parse file size: {raw_size!r}")

    return FileMetadata(name=name, size=int(raw_size), sender_address=sender_address)
