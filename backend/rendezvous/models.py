"""Pydantic models for rendezvous sessions."""

import re

from pydantic import BaseModel

# Anything else in a path segment is rejected with 400 before a lookup.
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class Session(BaseModel):
    """A broker-held record binding a session id to a sender and one receiver."""
    session_id: str
    sender_id: str
    receiver_id: str = ""

    @property
    def has_receiver(self) -> bool:
        return self.receiver_id != ""


def is_valid_session_id(session_id: str | None) -> bool:
    return bool(session_id) and SESSION_ID_PATTERN.match(session_id) is not None
