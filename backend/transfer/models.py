"""Pydantic models for file transfer."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TransferState(str, Enum):
    """All possible states for one side of a transfer."""
    INITIALIZING = "initializing"
    WAITING_FOR_RECEIVER = "waiting_for_receiver"
    TRANSFERRING = "transferring"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransferState.COMPLETED,
            TransferState.ERROR,
            TransferState.CANCELLED,
        )


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class FileMetadata(BaseModel):
    """What the sender announced about the file, as parsed by the receiver."""
    model_config = ConfigDict(frozen=True)

    name: str
    size: int = Field(ge=0)
    sender_address: str = ""

    def progress_percent(self, bytes_moved: int) -> float:
        if self.size <= 0:
            return 100.0
        return min(bytes_moved / self.size * 100, 100.0)


class ProgressEvent(BaseModel):
    """One update from a running transfer task to its consumer."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    state: TransferState
    bytes_moved: int = 0
    total_bytes: int = 0
    speed: float = 0.0  # MB/s, average since the stream started
    session_id: str = ""
    error: Exception | None = None

    @property
    def progress_percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(self.bytes_moved / self.total_bytes * 100, 100.0)
