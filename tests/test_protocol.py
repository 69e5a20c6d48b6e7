from __future__ import annotations

import pytest

from transfer.errors import HandshakeError
from transfer.protocol import (
    decode_line,
    encode_line,
    encode_metadata,
    is_framable_name,
    parse_metadata,
)


def test_metadata_line_format() -> None:
    assert encode_metadata("report.pdf", 1024) == b"report.pdf|1024\n"
    assert encode_line("ready") == b"ready\n"


@pytest.mark.parametrize(
    "name", ["report.pdf", "no extension", "résumé final.txt", " notes.txt", "trailing.txt "]
)
def test_parse_reads_back_encoded_metadata(name: str) -> None:
    line = decode_line(encode_metadata(name, 42))

    metadata = parse_metadata(line, sender_address="10.0.0.2:3001")

    assert metadata.name == name
    assert metadata.size == 42
    assert metadata.sender_address == "10.0.0.2:3001"


def test_zero_byte_file_is_valid() -> None:
    assert parse_metadata("empty.txt|0").size == 0


def test_decode_strips_only_the_line_terminator() -> None:
    assert decode_line(b"accepted\r\n") == "accepted"
    assert decode_line(b"  padded name.txt|3\n") == "  padded name.txt|3"


def test_decode_rejects_invalid_utf8() -> None:
    with pytest.raises(HandshakeError):
        decode_line(b"\xff\xfe\n")


@pytest.mark.parametrize("line", ["no-separator", "a|b|3", "|10", ""])
def test_malformed_file_info(line: str) -> None:
    with pytest.raises(HandshakeError, match="invalid file info"):
        parse_metadata(line)


@pytest.mark.parametrize("line", ["file.txt|abc", "file.txt|-5", "file.txt|", "file.txt|1.5"])
def test_unparseable_size(line: str) -> None:
    with pytest.raises(HandshakeError, match="failed to parse file size"):
        parse_metadata(line)


@pytest.mark.parametrize("name", ["a|b.txt", "line\nbreak", ""])
def test_names_that_cannot_be_framed_are_refused(name: str) -> None:
    assert not is_framable_name(name)
    with pytest.raises(ValueError):
        encode_metadata(name, 1)


def test_negative_size_is_refused() -> None:
    with pytest.raises(ValueError):
        encode_metadata("ok.txt", -1)
