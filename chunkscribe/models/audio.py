"""Audio-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..errors import UnsupportedEncoding


class AudioEncoding(Enum):
    """Closed set of audio encodings accepted for upload."""
    WEBM = "audio/webm"
    OGG = "audio/ogg"
    MPEG = "audio/mpeg"
    MP4 = "audio/mp4"
    M4A = "audio/x-m4a"
    WAV = "audio/wav"

    @property
    def content_type(self) -> str:
        return self.value

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @classmethod
    def from_content_type(cls, content_type: str) -> "AudioEncoding":
        """Parse a MIME type such as ``audio/webm;codecs=opus``.

        Raises:
            UnsupportedEncoding: If the type is not one of the accepted encodings
        """
        base = (content_type or "").split(";", 1)[0].strip().lower()
        base = _ALIASES.get(base, base)
        for encoding in cls:
            if encoding.value == base:
                return encoding
        raise UnsupportedEncoding(f"Unsupported audio content type: {content_type!r}")


_ALIASES = {
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
}

_EXTENSIONS = {
    AudioEncoding.WEBM: "webm",
    AudioEncoding.OGG: "ogg",
    AudioEncoding.MPEG: "mp3",
    AudioEncoding.MP4: "mp4",
    AudioEncoding.M4A: "m4a",
    AudioEncoding.WAV: "wav",
}


@dataclass
class AudioStats:
    """Audio recording statistics."""
    is_recording: bool
    is_paused: bool
    duration_seconds: float
    sample_rate: int
    frames_per_buffer: int
    total_buffers: int
    peak_level: float = 0.0


@dataclass
class AudioChunk:
    """One fixed-duration segment of captured audio, ready for upload."""
    sequence_number: int  # capture order on the client, never sent as an index
    data: bytes
    encoding: AudioEncoding = AudioEncoding.WAV
    duration_seconds: float = 0.0
    captured_at: datetime = field(default_factory=datetime.now)
    final: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.data)
