"""Speech-to-text backends for chunkscribe."""

import logging

from .base import AbstractTranscriptionBackend
from ..models.transcription import TranscriptionResult
from .google_backend import GoogleSpeechBackend
from .openai_backend import OpenAIWhisperBackend

logger = logging.getLogger(__name__)

__all__ = [
    "AbstractTranscriptionBackend",
    "TranscriptionResult",
    "GoogleSpeechBackend",
    "OpenAIWhisperBackend",
    "create_backend",
]


def create_backend(config) -> AbstractTranscriptionBackend:
    """Build the backend selected by ``transcription.backend``.

    Construction never contacts the provider; missing credentials surface
    later through ``check_available()``.
    """
    name = config.get('transcription.backend', 'openai')
    language = config.get('transcription.language', 'en')
    timeout = float(config.get('transcription.request_timeout_seconds', 60.0))
    logger.info(f"Creating transcription backend: {name} (language={language})")

    if name == "google":
        return GoogleSpeechBackend(
            credentials_path=config.get('transcription.google.credentials_path'),
            sample_rate=config.get('audio.sample_rate', 16000),
            language=config.get('transcription.google.language_code', 'en-US'),
            use_enhanced=config.get('transcription.google.use_enhanced_model', True),
            enable_automatic_punctuation=config.get('transcription.google.enable_automatic_punctuation', True),
            timeout=timeout,
        )
    if name == "openai":
        return OpenAIWhisperBackend(
            api_key=config.get('transcription.openai.api_key'),
            model=config.get('transcription.openai.model', 'whisper-1'),
            language=language,
            timeout=timeout,
            base_url=config.get('transcription.openai.base_url', 'https://api.openai.com/v1'),
        )
    raise ValueError(f"Unknown transcription backend: {name}")
