"""Unit tests for the speech-to-text backends with the providers mocked out."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest
from google.api_core import exceptions as gax_exceptions

from chunkscribe.errors import (
    InvalidAudio,
    RateLimited,
    TranscriptionPartialFailure,
    TranscriptionTimeout,
    TranscriptionUnavailable,
)
from chunkscribe.models.audio import AudioEncoding
from chunkscribe.transcription import GoogleSpeechBackend, OpenAIWhisperBackend


def recognize_response(*alternatives):
    results = [SimpleNamespace(alternatives=[SimpleNamespace(transcript=text, confidence=conf)])
               for text, conf in alternatives]
    return SimpleNamespace(results=results)


@pytest.fixture
def google_backend(temp_data_dir):
    credentials = f"{temp_data_dir}/credentials.json"
    with open(credentials, "w") as f:
        f.write("{}")
    backend = GoogleSpeechBackend(credentials_path=credentials)
    backend.client = Mock()
    return backend


@pytest.mark.unit
class TestGoogleSpeechBackend:

    def test_missing_credentials_is_unavailable(self, temp_data_dir):
        with pytest.raises(TranscriptionUnavailable):
            GoogleSpeechBackend(credentials_path=None).check_available()
        with pytest.raises(TranscriptionUnavailable):
            GoogleSpeechBackend(credentials_path=f"{temp_data_dir}/missing.json").check_available()

    def test_invalid_credentials_file_is_unavailable(self, temp_data_dir):
        credentials = f"{temp_data_dir}/broken.json"
        with open(credentials, "w") as f:
            f.write("not json")
        with pytest.raises(TranscriptionUnavailable):
            GoogleSpeechBackend(credentials_path=credentials).check_available()

    def test_joins_consecutive_results(self, google_backend):
        google_backend.client.recognize.return_value = recognize_response(
            (" hello there ", 0.9), ("general kenobi", 0.7))

        result = google_backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)

        assert result.text == "hello there general kenobi"
        assert result.confidence == pytest.approx(0.8)
        assert result.chunk_id == "s1.00000"

    def test_no_speech_gives_empty_text(self, google_backend):
        google_backend.client.recognize.return_value = SimpleNamespace(results=[])
        result = google_backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)
        assert result.text == ""

    def test_wav_uses_linear16_at_capture_rate(self, google_backend):
        config = google_backend.recognition_config(AudioEncoding.WAV)
        assert config.sample_rate_hertz == 16000
        assert config.language_code == "en-US"

    @pytest.mark.parametrize("encoding", [AudioEncoding.MP4, AudioEncoding.M4A])
    def test_unsupported_container_is_invalid_audio(self, google_backend, encoding):
        with pytest.raises(InvalidAudio):
            google_backend.transcribe("s1.00000", b"....", encoding)
        google_backend.client.recognize.assert_not_called()

    @pytest.mark.parametrize("raised, expected", [
        (gax_exceptions.DeadlineExceeded("late"), TranscriptionTimeout),
        (gax_exceptions.ResourceExhausted("quota"), RateLimited),
        (gax_exceptions.InvalidArgument("bad audio"), InvalidAudio),
        (gax_exceptions.Unauthenticated("expired"), TranscriptionUnavailable),
        (gax_exceptions.InternalServerError("oops"), TranscriptionPartialFailure),
    ])
    def test_provider_errors_are_mapped(self, google_backend, raised, expected):
        google_backend.client.recognize.side_effect = raised
        with pytest.raises(expected):
            google_backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)


@pytest.mark.unit
class TestOpenAIWhisperBackend:

    def test_missing_key_is_unavailable(self):
        backend = OpenAIWhisperBackend(api_key=None)
        with pytest.raises(TranscriptionUnavailable):
            backend.check_available()
        with pytest.raises(TranscriptionUnavailable):
            backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)

    def test_transcribe_returns_text(self):
        backend = OpenAIWhisperBackend(api_key="sk-test")
        with patch.object(backend, "_request", new=AsyncMock(return_value="hello")):
            result = backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)
        assert result.text == "hello"
        assert result.service == "OpenAI Whisper"

    def test_timeout_is_mapped(self):
        backend = OpenAIWhisperBackend(api_key="sk-test")
        with patch.object(backend, "_request", new=AsyncMock(side_effect=asyncio.TimeoutError())):
            with pytest.raises(TranscriptionTimeout):
                backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)

    def test_client_error_is_partial_failure(self):
        backend = OpenAIWhisperBackend(api_key="sk-test")
        with patch.object(backend, "_request", new=AsyncMock(side_effect=aiohttp.ClientConnectionError("reset"))):
            with pytest.raises(TranscriptionPartialFailure):
                backend.transcribe("s1.00000", b"RIFF", AudioEncoding.WAV)

    @pytest.mark.parametrize("status, expected", [
        (429, RateLimited),
        (401, TranscriptionUnavailable),
        (403, TranscriptionUnavailable),
        (400, InvalidAudio),
        (415, InvalidAudio),
        (408, TranscriptionTimeout),
        (502, TranscriptionPartialFailure),
    ])
    def test_status_mapping(self, status, expected):
        backend = OpenAIWhisperBackend(api_key="sk-test")
        with pytest.raises(expected):
            backend._raise_for_status("s1.00000", status, "body")

    def test_url_from_base(self):
        backend = OpenAIWhisperBackend(api_key="sk-test", base_url="http://gateway/v1/")
        assert backend.url == "http://gateway/v1/audio/transcriptions"

