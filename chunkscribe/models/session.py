"""Session-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .audio import AudioEncoding


class SessionStatus(Enum):
    """Lifecycle of a server-side recording session."""
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ABORTED)


@dataclass(frozen=True)
class PayloadRef:
    """Where the bytes of a part live and how they are encoded."""
    key: str
    encoding: AudioEncoding
    size_bytes: int


@dataclass(frozen=True)
class Part:
    """One stored audio segment with its server-assigned index."""
    index: int
    payload_ref: PayloadRef
    stored_at: datetime


@dataclass
class Session:
    """One recording attempt of an owner."""
    session_id: str
    owner_id: str
    status: SessionStatus = SessionStatus.RECORDING
    created_at: datetime = field(default_factory=datetime.now)
    parts: List[Part] = field(default_factory=list)
    closed_at: Optional[datetime] = None

    @property
    def key(self):
        return (self.owner_id, self.session_id)


@dataclass
class AppendResult:
    """Outcome of an accepted append."""
    index: int
    part_count: int


@dataclass
class PartOutcome:
    """Transcription outcome of a single part during assembly."""
    index: int
    text: str
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class FinalizeResult:
    """Assembled transcript returned by finalize."""
    session_id: str
    transcript: str
    part_count: int
    failed_parts: List[int] = field(default_factory=list)
