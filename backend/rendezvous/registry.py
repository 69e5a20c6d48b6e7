"""
In-memory session registry for the relay.

Sessions are kept for the lifetime of the process. Each record owns its
lock, so join/leave on one session never waits on another session; the map
lock is only held while a new record is inserted.
"""

import logging
import threading
from dataclasses import dataclass, field

from rendezvous.errors import SessionConflictError, SessionNotFoundError
from rendezvous.ids import generate_id
from rendezvous.models import Session

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _SessionRecord:
    session: Session
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionRegistry:
    """Concurrent map of session id -> session record."""

    def __init__(self) -> None:
        self._records: dict[str, _SessionRecord] = {}
        self._insert_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def create(self) -> Session:
        """Register a new session and return a copy of it."""
        with self._insert_lock:
            session_id = generate_id()
            while session_id in self._records:
                session_id = generate_id()
            session = Session(session_id=session_id, sender_id=generate_id())
            record = _SessionRecord(session=session)
            with record.lock:
                self._records[session_id] = record
                created = session.model_copy()
        logger.info(f"Session {session_id} created")
        return created

    def get(self, session_id: str) -> Session | None:
        record = self._records.get(session_id)
        if record is None:
            return None
        with record.lock:
            return record.session.model_copy()

    def join(self, session_id: str) -> Session:
        """Attach a receiver, failing without mutation if one is attached."""
        record = self._lookup(session_id)
        with record.lock:
            if record.session.has_receiver:
                raise SessionConflictError("This session already has an active receiver")
            record.session.receiver_id = generate_id()
            session = record.session.model_copy()
        logger.info(f"Receiver {session.receiver_id} joined session {session_id}")
        return session

    def leave(self, session_id: str) -> Session:
        """Detach the current receiver, failing if there is none."""
        record = self._lookup(session_id)
        with record.lock:
            if not record.session.has_receiver:
                raise SessionConflictError("Session does not have a receiver")
            receiver_id = record.session.receiver_id
            record.session.receiver_id = ""
            session = record.session.model_copy()
        logger.info(f"Receiver {receiver_id} left session {session_id}")
        return session

    def _lookup(self, session_id: str) -> _SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return record
