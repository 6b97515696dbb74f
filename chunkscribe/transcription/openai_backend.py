"""OpenAI Whisper transcription backend."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

import aiohttp

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

logger = logging.getLogger(__name__)


class OpenAIWhisperBackend(AbstractTranscriptionBackend):
    """Sends each part to the OpenAI audio transcription endpoint."""

    service_name = "OpenAI Whisper"

    def __init__(self,
                 api_key: Optional[str],
                 model: str = "whisper-1",
                 language: str = "en",
                 timeout: float = 60.0,
                 base_url: str = "https://api.openai.com/v1"):
        """Initialize OpenAI Whisper backend.

        Args:
            api_key: OpenAI API key
            model: Transcription model name
            language: ISO-639-1 language hint
            timeout: Total per-request timeout in seconds
            base_url: API root, overridable for compatible gateways
        """
        super().__init__(language)
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.url = f"{base_url.rstrip('/')}/audio/transcriptions"

        logger.info(f"OpenAIWhisperBackend initialized with model: {model}")

    def check_available(self) -> None:
        if not self.api_key:
            raise TranscriptionUnavailable("OpenAI API key is not configured")

    def transcribe(self, chunk_id: str, audio: bytes, encoding: AudioEncoding) -> TranscriptionResult:
        self.check_available()
        start_time = time.time()
        try:
            text = asyncio.run(self._request(chunk_id, audio, encoding))
        except asyncio.TimeoutError as e:
            logger.error(f"OpenAI transcription timed out for chunk {chunk_id}")
            raise TranscriptionTimeout(f"OpenAI transcription timeout (chunk={chunk_id})") from e
        except aiohttp.ClientError as e:
            logger.error(f"OpenAI transcription request failed for chunk {chunk_id}: {e}")
            raise TranscriptionPartialFailure(f"OpenAI request failed (chunk={chunk_id}): {e}") from e

        processing_time = time.time() - start_time
        logger.debug(f"Transcribed {chunk_id} in {processing_time:.3f}s: '{text[:50]}'")
        return TranscriptionResult(
            text=text,
            confidence=1.0 if text else 0.0,
            processing_time=processing_time,
            timestamp=datetime.now(),
            service=self.service_name,
            language=self.language,
            chunk_id=chunk_id,
        )

    async def _request(self, chunk_id: str, audio: bytes, encoding: AudioEncoding) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"}

        form = aiohttp.FormData()
        form.add_field("file", audio,
                       filename=f"{chunk_id}.{encoding.extension}",
                       content_type=encoding.content_type)
        form.add_field("model", self.model)
        form.add_field("language", self.language)
        form.add_field("temperature", "0")
        form.add_field("response_format", "text")

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.url, headers=headers, data=form) as response:
                body = await response.text()
                if response.status == 200:
                    return body.strip()
                self._raise_for_status(chunk_id, response.status, body)

    def _raise_for_status(self, chunk_id: str, status: int, body: str) -> None:
        detail = f"OpenAI API error {status} (chunk={chunk_id}): {body[:200]}"
        if status == 429:
            raise RateLimited(detail)
        if status in (401, 403):
            raise TranscriptionUnavailable(detail)
        if status in (400, 413, 415):
            raise InvalidAudio(detail)
        if status == 408:
            raise TranscriptionTimeout(detail)
        raise TranscriptionPartialFailure(detail)
