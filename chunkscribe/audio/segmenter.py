"""Cuts the captured PCM stream into fixed-duration WAV chunks."""

import io
import logging
import threading
import wave
from datetime import datetime
from typing import Callable, Optional

from ..models.audio import AudioChunk, AudioEncoding
from ..models.events import AudioEvent

logger = logging.getLogger(__name__)


def encode_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


class ChunkSegmenter:
    """Accumulates AudioEvents and emits one AudioChunk per ``chunk_seconds``.

    Called from the capture thread; ``flush()`` and ``clear()`` may be called
    from the controller thread, hence the lock.
    """

    def __init__(self,
                 on_chunk: Callable[[AudioChunk], None],
                 chunk_seconds: float = 10.0,
                 sample_rate: int = 16000,
                 channels: int = 1,
                 sample_width: int = 2):
        self.on_chunk = on_chunk
        self.chunk_seconds = chunk_seconds
        self.sample_rate = sample_rate
        self.channels = channels
        self.sample_width = sample_width

        self.bytes_per_second = sample_rate * channels * sample_width
        self.chunk_bytes = int(chunk_seconds * self.bytes_per_second)

        self._buffer = bytearray()
        self._buffer_start: Optional[datetime] = None
        self._lock = threading.Lock()
        self.chunks_emitted = 0

    @property
    def buffered_seconds(self) -> float:
        with self._lock:
            return len(self._buffer) / float(self.bytes_per_second)

    def on_audio_event(self, event: AudioEvent) -> None:
        """Add one buffer of PCM; emits a chunk each time enough audio is buffered."""
        ready = []
        with self._lock:
            if not self._buffer:
                self._buffer_start = datetime.now()
            self._buffer.extend(event.audio_data)
            while len(self._buffer) >= self.chunk_bytes:
                pcm = bytes(self._buffer[:self.chunk_bytes])
                del self._buffer[:self.chunk_bytes]
                ready.append(self._make_chunk(pcm, self._buffer_start, final=False))
                self._buffer_start = datetime.now() if self._buffer else None

        for chunk in ready:
            self.on_chunk(chunk)

    def flush(self) -> Optional[AudioChunk]:
        """Emit whatever is buffered as the final chunk; nothing if empty."""
        with self._lock:
            if not self._buffer:
                return None
            pcm = bytes(self._buffer)
            started_at = self._buffer_start
            self._buffer.clear()
            self._buffer_start = None
            chunk = self._make_chunk(pcm, started_at, final=True)
        self.on_chunk(chunk)
        return chunk

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._buffer)
            self._buffer.clear()
            self._buffer_start = None
        if dropped:
            logger.info(f"Discarded {dropped / float(self.bytes_per_second):.1f}s of buffered audio")

    def _make_chunk(self, pcm: bytes, started_at: Optional[datetime], final: bool) -> AudioChunk:
        self.chunks_emitted += 1
        duration = len(pcm) / float(self.bytes_per_second)
        logger.debug(f"Chunk {self.chunks_emitted}: {duration:.2f}s, final={final}")
        return AudioChunk(
            sequence_number=self.chunks_emitted,
            data=encode_wav(pcm, self.sample_rate, self.channels, self.sample_width),
            encoding=AudioEncoding.WAV,
            duration_seconds=duration,
            captured_at=started_at or datetime.now(),
            final=final,
        )
