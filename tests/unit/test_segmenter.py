import io
import time
import wave
import pytest
from datetime import datetime

from chunkscribe.audio.segmenter import ChunkSegmenter, encode_wav
from chunkscribe.models.audio import AudioEncoding


def wav_frames(data: bytes) -> int:
    with wave.open(io.BytesIO(data), 'rb') as wav_file:
        assert wav_file.getframerate() == 16000
        assert wav_file.getnchannels() == 1
        assert wav_file.getsampwidth() == 2
        return wav_file.getnframes()


@pytest.mark.unit
class TestChunkSegmenter:

    def test_emits_one_chunk_per_interval(self, audio_test_data, audio_event_factory):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append, chunk_seconds=0.5)
        audio = audio_test_data("sine", duration_seconds=1.25)

        step = 2048
        for i, offset in enumerate(range(0, len(audio), step)):
            segmenter.on_audio_event(audio_event_factory(i, audio[offset:offset + step]))

        assert len(chunks) == 2
        assert [c.sequence_number for c in chunks] == [1, 2]
        assert all(c.encoding is AudioEncoding.WAV for c in chunks)
        assert all(wav_frames(c.data) == 8000 for c in chunks)
        assert segmenter.buffered_seconds == pytest.approx(0.25)

    def test_flush_emits_remainder_as_final(self, audio_test_data, audio_event_factory):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append, chunk_seconds=1.0)
        segmenter.on_audio_event(audio_event_factory(1, audio_test_data("noise", 0.3)))

        chunk = segmenter.flush()

        assert chunks == [chunk]
        assert chunk.final
        assert chunk.duration_seconds == pytest.approx(0.3)
        assert wav_frames(chunk.data) == 4800

    def test_flush_keeps_capture_start_time(self, audio_test_data, audio_event_factory):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append, chunk_seconds=1.0)
        segmenter.on_audio_event(audio_event_factory(1, audio_test_data("sine", 0.3)))
        time.sleep(0.05)
        before_flush = datetime.now()

        chunk = segmenter.flush()

        assert chunk.captured_at < before_flush

    def test_flush_with_empty_buffer(self):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append)
        assert segmenter.flush() is None
        assert chunks == []

    def test_clear_discards_buffer(self, audio_test_data, audio_event_factory):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append, chunk_seconds=1.0)
        segmenter.on_audio_event(audio_event_factory(1, audio_test_data("silence", 0.5)))
        segmenter.clear()
        assert segmenter.flush() is None
        assert chunks == []

    def test_large_buffer_emits_several_chunks(self, audio_test_data, audio_event_factory):
        chunks = []
        segmenter = ChunkSegmenter(chunks.append, chunk_seconds=0.1)
        segmenter.on_audio_event(audio_event_factory(1, audio_test_data("sine", 0.35)))
        assert len(chunks) == 3
        assert not any(c.final for c in chunks)

    def test_encode_wav_header(self, sample_audio_chunk):
        data = encode_wav(sample_audio_chunk, 16000)
        assert data[:4] == b"RIFF"
        assert wav_frames(data) == 1024
