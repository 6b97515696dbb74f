"""Event models for audio frames and recording lifecycle notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict


@dataclass
class AudioEvent:
    """One buffer of raw PCM read from the input device."""
    buffer_id: str
    audio_data: bytes
    timestamp: float  # Unix timestamp when the buffer was captured
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1
    sample_width: int = 2
    duration_ms: Optional[int] = None
    final: bool = False  # True for the last buffer read before the device is released

    def __post_init__(self):
        """Calculate buffer duration if not provided."""
        if self.duration_ms is None and self.audio_data:
            bytes_per_second = self.sample_rate * self.channels * self.sample_width
            self.duration_ms = int(len(self.audio_data) / bytes_per_second * 1000)


@dataclass
class SessionEvent:
    """Recording lifecycle event published by the capture controller."""
    event_type: str  # "started", "paused", "resumed", "chunk", "stopping", "completed", "aborted", "error"
    session_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
