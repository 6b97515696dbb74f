"""Abstract base classes for transcription backends."""

from abc import ABC, abstractmethod
import logging

from ..models.audio import AudioEncoding
from ..models.transcription import TranscriptionResult

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for speech-to-text backends.

    Backends are called from worker threads, one part at a time. Failures
    limited to the given audio raise a ``TranscriptionPartialFailure``
    subclass; a missing or misconfigured provider raises
    ``TranscriptionUnavailable``.
    """

    service_name = "abstract"

    def __init__(self, language: str = "en"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    def check_available(self) -> None:
        """Verify configuration before any audio is sent.

        Raises:
            TranscriptionUnavailable: If the provider can not be used at all
        """

    @abstractmethod
    def transcribe(self, chunk_id: str, audio: bytes, encoding: AudioEncoding) -> TranscriptionResult:
        """Transcribe one audio part.

        Args:
            chunk_id: Identifier used in logs and attached to the result
            audio: Encoded audio bytes
            encoding: Encoding of ``audio``

        Returns:
            TranscriptionResult; ``text`` is empty when no speech was detected
        """

    def cleanup(self) -> None:
        """Clean up backend resources."""
