"""Transcription-related data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class TranscriptionResult:
    """Result of a transcription operation."""
    text: str
    confidence: float
    processing_time: float
    timestamp: datetime
    service: str
    language: str = "en-US"
    chunk_id: Optional[str] = None

    @property
    def has_speech(self) -> bool:
        return bool(self.text and self.text.strip())
