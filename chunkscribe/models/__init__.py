"""Data models for the chunkscribe application."""

from .audio import AudioEncoding, AudioStats, AudioChunk
from .events import AudioEvent, SessionEvent
from .session import (
    SessionStatus,
    PayloadRef,
    Part,
    Session,
    AppendResult,
    PartOutcome,
    FinalizeResult,
)
from .transcription import TranscriptionResult

__all__ = [
    "AudioEncoding",
    "AudioStats",
    "AudioChunk",
    "AudioEvent",
    "SessionEvent",
    "SessionStatus",
    "PayloadRef",
    "Part",
    "Session",
    "AppendResult",
    "PartOutcome",
    "FinalizeResult",
    "TranscriptionResult",
]
