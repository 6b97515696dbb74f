"""Google Speech-to-Text transcription backend."""

import os
import time
import logging
import threading
from datetime import datetime
from typing import Optional

from .base import AbstractTranscriptionBackend
from ..errors import (
    InvalidAudio,
    RateLimited,
    TranscriptionPartialFailure,
    TranscriptionTimeout,
    TranscriptionUnavailable,
)
from ..models.audio import AudioEncoding
from ..models.transcription import TranscriptionResult

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)

# Google decodes these containers itself; MP4/M4A are not supported by the API.
_GOOGLE_ENCODINGS = {
    AudioEncoding.WAV: ("LINEAR16", None),
    AudioEncoding.OGG: ("OGG_OPUS", 48000),
    AudioEncoding.WEBM: ("WEBM_OPUS", 48000),
    AudioEncoding.MPEG: ("MP3", 44100),
}


class GoogleSpeechBackend(AbstractTranscriptionBackend):
    """Google Speech-to-Text API backend for transcription."""

    service_name = "Google Speech-to-Text"

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 sample_rate: int = 16000,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 timeout: float = 60.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            sample_rate: Sample rate of LINEAR16 (WAV) parts
            language: Language code (e.g., 'en-US', 'pt-BR')
            use_enhanced: Whether to use enhanced model (costs more but better quality)
            enable_automatic_punctuation: Enable automatic punctuation
            timeout: Per-request deadline in seconds
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        self.sample_rate = sample_rate
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.timeout = timeout
        self.client = None
        self.project_id = None
        self._init_lock = threading.Lock()

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        with self._init_lock:
            if self.client is not None:
                return True
            logger.info(f"Loading Google credentials from: {self.credentials_path}")
            try:
                credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
            except (OSError, ValueError, auth_exceptions.GoogleAuthError) as e:
                raise TranscriptionUnavailable(f"Invalid Google credentials: {e}") from e
            self.client = speech.SpeechClient(credentials=credentials)
            self.project_id = credentials.project_id
            logger.info(f"Using Google Cloud project: {self.project_id}")
            return True

    def check_available(self) -> None:
        if not self.credentials_path:
            raise TranscriptionUnavailable("Google credentials path is not configured")
        if not os.path.exists(self.credentials_path):
            raise TranscriptionUnavailable(f"Google credentials file not found: {self.credentials_path}")
        self.initialize()

    def recognition_config(self, encoding: AudioEncoding) -> speech.RecognitionConfig:
        mapped = _GOOGLE_ENCODINGS.get(encoding)
        google_encoding = getattr(speech.RecognitionConfig.AudioEncoding, mapped[0], None) if mapped else None
        if google_encoding is None:
            raise InvalidAudio(f"{encoding.content_type} is not supported by {self.service_name}")
        sample_rate = mapped[1] or self.sample_rate
        return speech.RecognitionConfig(
            encoding=google_encoding,
            sample_rate_hertz=sample_rate,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
        )

    def transcribe(self, chunk_id: str, audio: bytes, encoding: AudioEncoding) -> TranscriptionResult:
        """Transcribe audio part using Google Speech-to-Text."""
        self.check_available()
        start_time = time.time()
        config = self.recognition_config(encoding)

        logger.debug(f"Chunk ID: {chunk_id}; Audio size: {len(audio)} bytes; Encoding: {encoding.content_type}; Language: {self.language}")

        try:
            response = self.client.recognize(
                config=config,
                audio=speech.RecognitionAudio(content=audio),
                timeout=self.timeout,
            )
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded for chunk %s", chunk_id)
            raise TranscriptionTimeout(f"Google Speech recognize timeout (chunk={chunk_id}): {e}") from e
        except (gax_exceptions.ResourceExhausted, gax_exceptions.TooManyRequests) as e:
            logger.error("Google STT rate limited for chunk %s", chunk_id)
            raise RateLimited(f"Google Speech rate limited (chunk={chunk_id}): {e}") from e
        except gax_exceptions.InvalidArgument as e:
            logger.error("Google STT rejected audio for chunk %s: %s", chunk_id, e)
            raise InvalidAudio(f"Google Speech rejected audio (chunk={chunk_id}): {e}") from e
        except (gax_exceptions.Unauthenticated, gax_exceptions.PermissionDenied) as e:
            logger.error("Google STT refused credentials: %s", e)
            raise TranscriptionUnavailable(f"Google Speech refused credentials: {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error("Google STT API call error for chunk %s: %s", chunk_id, e)
            raise TranscriptionPartialFailure(f"Google Speech API error (chunk={chunk_id}): {e}") from e
        processing_time = time.time() - start_time

        if not response.results:
            logger.debug(f"No speech detected in {chunk_id}")
            return TranscriptionResult(
                text="",
                confidence=0.0,
                processing_time=processing_time,
                timestamp=datetime.now(),
                service=self.service_name,
                language=self.language,
                chunk_id=chunk_id,
            )

        # Long parts come back as several consecutive results.
        texts = []
        confidences = []
        for result in response.results:
            if not result.alternatives:
                continue
            best = result.alternatives[0]
            texts.append(best.transcript.strip())
            confidences.append(best.confidence)

        text = " ".join(t for t in texts if t)
        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        logger.debug(f"Transcribed {chunk_id}: '{text}' (confidence: {confidence:.2f}, processing_time: {processing_time:.3f}s)")
        return TranscriptionResult(
            text=text,
            confidence=confidence,
            processing_time=processing_time,
            timestamp=datetime.now(),
            service=self.service_name,
            language=self.language,
            chunk_id=chunk_id,
        )
