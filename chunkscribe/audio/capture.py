"""Microphone capture on a background thread."""

import logging
import threading
import time
from datetime import datetime
from threading import Event, Thread
from typing import Callable, Optional

import numpy as np
import pyaudio

from ..errors import DeviceUnavailable
from ..models.audio import AudioStats
from ..models.events import AudioEvent

logger = logging.getLogger(__name__)


class AudioCapture:
    """Continuous audio capture delivering every buffer to a callback.

    The input stream is opened synchronously by ``start_recording()`` so a
    missing device or denied permission is raised to the caller. Reads then
    happen on a daemon thread; buffers read while paused are discarded.
    """

    def __init__(
        self,
        callback: Callable[[AudioEvent], None],
        sample_rate: int = 16000,
        frames_per_buffer: int = 1024,
        channels: int = 1,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            callback: Receives one AudioEvent per buffer, on the capture thread
            sample_rate: Audio sample rate (16kHz for speech models)
            frames_per_buffer: Frames read per buffer
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
        """
        self.audio_event_callback = callback
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.channels = channels
        self.format = format
        self.sample_width = pyaudio.get_sample_size(format)

        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.pause_event = Event()
        self.is_recording = False

        self.start_time: Optional[datetime] = None
        self.total_buffers = 0
        self.recorded_frames = 0
        self.peak_level = 0.0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    @property
    def recorded_seconds(self) -> float:
        """Seconds of audio delivered so far, excluding paused time."""
        return self.recorded_frames / float(self.sample_rate)

    def start_recording(self) -> None:
        """Open the input device and start reading in a background thread.

        Raises:
            DeviceUnavailable: No input device, or the device could not be opened
        """
        if self.is_recording:
            logger.warning("Recording already in progress")
            return

        logger.info("Starting audio recording")
        self.stream = self._open_audio_stream()
        self.stop_event.clear()
        self.pause_event.clear()
        self.start_time = datetime.now()
        self.total_buffers = 0
        self.recorded_frames = 0
        self.peak_level = 0.0

        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.is_recording = True
        self.recording_thread.start()

    def pause(self) -> None:
        self.pause_event.set()
        logger.info("Audio capture paused")

    def resume(self) -> None:
        self.pause_event.clear()
        logger.info("Audio capture resumed")

    def stop_recording(self) -> None:
        """Stop recording and release the device."""
        if not self.is_recording:
            logger.warning("No recording in progress")
            return

        logger.info("Stopping audio recording")
        self.stop_event.set()

        if (self.recording_thread and self.recording_thread.is_alive()
                and self.recording_thread is not threading.current_thread()):
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")

        self.is_recording = False
        logger.info(f"Recording stopped. Total buffers: {self.total_buffers}, "
                    f"recorded {self.recorded_seconds:.1f}s")

    def _open_audio_stream(self):
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            if self.pyaudio_instance.get_device_count() == 0:
                raise DeviceUnavailable("No audio input device found")
            stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frames_per_buffer,
                stream_callback=None
            )
        except DeviceUnavailable:
            self._terminate()
            raise
        except (OSError, ValueError) as e:
            self._terminate()
            raise DeviceUnavailable(f"Could not open audio input: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.frames_per_buffer} frames/buffer")
        return stream

    def _terminate(self) -> None:
        if self.pyaudio_instance:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def _read_buffer(self) -> bytes:
        audio_data = self.stream.read(self.frames_per_buffer, exception_on_overflow=False)
        self.total_buffers += 1
        return audio_data

    def _publish_audio_event(self, audio_data: bytes) -> None:
        samples = np.frombuffer(audio_data, dtype=np.int16)
        if samples.size:
            self.peak_level = float(np.abs(samples.astype(np.int32)).max()) / 32768.0
        self.recorded_frames += len(audio_data) // (self.sample_width * self.channels)

        self.audio_event_callback(AudioEvent(
            buffer_id=f"buffer_{self.total_buffers}",
            audio_data=audio_data,
            timestamp=time.time(),
            sequence_number=self.total_buffers,
            sample_rate=self.sample_rate,
            channels=self.channels,
            sample_width=self.sample_width,
        ))

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        try:
            while not self.stop_event.is_set():
                audio_data = self._read_buffer()
                if self.pause_event.is_set() or self.stop_event.is_set():
                    continue
                self._publish_audio_event(audio_data)
        except OSError as e:
            logger.error(f"Audio input failed: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Audio callback failed: {e}", exc_info=True)
        finally:
            if self.stream:
                self.stream.stop_stream()
                self.stream.close()
                self.stream = None
            self._terminate()

    def get_recording_stats(self) -> AudioStats:
        """Get current recording statistics."""
        return AudioStats(
            is_recording=self.is_recording,
            is_paused=self.pause_event.is_set(),
            duration_seconds=self.recorded_seconds,
            sample_rate=self.sample_rate,
            frames_per_buffer=self.frames_per_buffer,
            total_buffers=self.total_buffers,
            peak_level=self.peak_level,
        )
