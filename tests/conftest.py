"""Pytest configuration and fixtures for chunkscribe tests."""

import pytest
import tempfile
import threading
import time
import logging
from datetime import datetime
from unittest.mock import Mock, patch
import numpy as np

from chunkscribe.errors import TranscriptionUnavailable
from chunkscribe.models.audio import AudioChunk, AudioEncoding
from chunkscribe.models.events import AudioEvent
from chunkscribe.models.transcription import TranscriptionResult
from chunkscribe.server.service import TranscriptionSessionService
from chunkscribe.storage.part_storage import InMemoryPartStorage
from chunkscribe.transcription.base import AbstractTranscriptionBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeBackend(AbstractTranscriptionBackend):
    """Backend scripted by payload: text, an exception to raise, or a delay.

    Payloads without a script entry are decoded as UTF-8 when possible so
    tests can upload ``b"A"`` and expect ``"A"`` back.
    """

    service_name = "fake"

    def __init__(self, script=None, default_text="speech", delay=0.0):
        super().__init__("en")
        self.script = dict(script or {})
        self.default_text = default_text
        self.delay = delay
        self.available = True
        self.calls = []
        self._lock = threading.Lock()

    def check_available(self) -> None:
        if not self.available:
            raise TranscriptionUnavailable("fake backend disabled")

    def transcribe(self, chunk_id, audio, encoding):
        with self._lock:
            self.calls.append(chunk_id)
        if self.delay:
            time.sleep(self.delay)
        outcome = self.script.get(bytes(audio))
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            try:
                outcome = bytes(audio).decode("utf-8")
            except UnicodeDecodeError:
                outcome = self.default_text
        return TranscriptionResult(
            text=outcome,
            confidence=0.99,
            processing_time=self.delay,
            timestamp=datetime.now(),
            service=self.service_name,
            chunk_id=chunk_id,
        )


def make_chunk(sequence_number: int, data: bytes, encoding=AudioEncoding.WAV) -> AudioChunk:
    return AudioChunk(sequence_number=sequence_number, data=data, encoding=encoding)


def make_audio_event(sequence_number: int, audio_data: bytes) -> AudioEvent:
    return AudioEvent(
        buffer_id=f"buffer_{sequence_number}",
        audio_data=audio_data,
        timestamp=time.time(),
        sequence_number=sequence_number,
    )


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def sample_audio_chunk():
    """Generate 1024 frames of 16-bit mono audio (sine wave)."""
    sample_rate = 16000
    duration = 1024 / sample_rate  # ~0.064 seconds
    freq = 440  # A4 note

    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * freq * t)

    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000):
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-1, 1, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        audio_data = (wave_data * 32767).astype(np.int16)
        return audio_data.tobytes()

    return generate_audio


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def memory_storage():
    return InMemoryPartStorage()


@pytest.fixture
def service(memory_storage, fake_backend):
    """Session service over in-memory storage and the fake backend."""
    service = TranscriptionSessionService(
        storage=memory_storage,
        backend=fake_backend,
        max_parts=5,
        max_part_bytes=1024 * 1024,
        request_timeout=5.0,
    )
    yield service
    service.shutdown()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 2048  # Silent audio
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None
        mock_pyaudio_instance.get_device_count.return_value = 1

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def backend_factory():
    """Build additional FakeBackend instances with a custom script."""
    return FakeBackend


@pytest.fixture
def chunk_factory():
    return make_chunk


@pytest.fixture
def audio_event_factory():
    return make_audio_event
