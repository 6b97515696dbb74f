"""Client-side recording lifecycle: capture, segment, upload, finalize."""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from ..audio.segmenter import ChunkSegmenter
from ..errors import CapacityExceeded, DeviceUnavailable, InvalidStateTransition
from ..models.audio import AudioChunk
from ..models.events import AudioEvent
from ..models.session import FinalizeResult
from .http_client import SessionApi
from .publisher import SessionEventPublisher
from .sequencer import DeliveryOutcome, UploadSequencer

logger = logging.getLogger(__name__)

CaptureFactory = Callable[[Callable[[AudioEvent], None]], Any]


class CaptureState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (CaptureState.COMPLETED, CaptureState.ABORTED)


class CaptureController:
    """Drives one recording from device acquisition to the final transcript.

    ``capture_factory(callback)`` must return an object with
    ``start_recording()``, ``pause()``, ``resume()``, ``stop_recording()``
    plus ``is_recording`` and ``recorded_seconds`` attributes, such as
    ``AudioCapture``.
    """

    def __init__(self,
                 api: SessionApi,
                 capture_factory: CaptureFactory,
                 chunk_seconds: float = 10.0,
                 max_session_seconds: float = 3600.0,
                 sample_rate: int = 16000,
                 channels: int = 1,
                 max_pending: int = 64,
                 delivery_timeout: float = 30.0,
                 drain_timeout: float = 120.0,
                 publisher: Optional[SessionEventPublisher] = None):
        self.api = api
        self.capture_factory = capture_factory
        self.max_session_seconds = max_session_seconds
        self.max_pending = max_pending
        self.delivery_timeout = delivery_timeout
        self.drain_timeout = drain_timeout
        self.publisher = publisher or SessionEventPublisher()

        self.segmenter = ChunkSegmenter(self._on_chunk,
                                        chunk_seconds=chunk_seconds,
                                        sample_rate=sample_rate,
                                        channels=channels)
        self.state = CaptureState.IDLE
        self.session_id: Optional[str] = None
        self.capture = None
        self.sequencer: Optional[UploadSequencer] = None
        self.result: Optional[FinalizeResult] = None
        self.last_error: Optional[BaseException] = None

        self._lock = threading.RLock()
        self._auto_stop_thread: Optional[threading.Thread] = None
        self._cancel_thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config, api: SessionApi, capture_factory: CaptureFactory,
                    publisher: Optional[SessionEventPublisher] = None) -> "CaptureController":
        return cls(
            api=api,
            capture_factory=capture_factory,
            chunk_seconds=float(config.get('audio.chunk_seconds', 10.0)),
            max_session_seconds=float(config.get('audio.max_session_seconds', 3600)),
            sample_rate=int(config.get('audio.sample_rate', 16000)),
            channels=int(config.get('audio.channels', 1)),
            max_pending=int(config.get('upload.max_pending', 64)),
            delivery_timeout=float(config.get('upload.delivery_timeout_seconds', 30.0)),
            drain_timeout=float(config.get('upload.drain_timeout_seconds', 120.0)),
            publisher=publisher,
        )

    def _run(self, coroutine):
        return asyncio.run(coroutine)

    def _transition(self, allowed, target: CaptureState, action: str) -> CaptureState:
        with self._lock:
            if self.state not in allowed:
                raise InvalidStateTransition(f"Cannot {action} while {self.state.value}")
            previous = self.state
            self.state = target
        logger.debug(f"Capture state {previous.value} -> {target.value}")
        return previous

    def _set_state(self, target: CaptureState) -> None:
        with self._lock:
            self.state = target

    def start(self) -> str:
        """Acquire the microphone, open a server session and start recording.

        Raises:
            DeviceUnavailable: No input device or permission denied
            EntitlementDenied: Server refused to start a session
        """
        with self._lock:
            if self.state is not CaptureState.IDLE:
                raise InvalidStateTransition(f"Cannot start while {self.state.value}")

        self.capture = self.capture_factory(self._on_audio_event)
        try:
            self.capture.start_recording()
        except DeviceUnavailable as e:
            logger.error(f"Audio device unavailable: {e}")
            self._fail(e)
            raise

        try:
            self.session_id = self._run(self.api.start_session())
        except Exception as e:
            logger.error(f"Could not start server session: {e}")
            self.capture.stop_recording()
            self._fail(e)
            raise

        self.sequencer = UploadSequencer(self._deliver,
                                         max_pending=self.max_pending,
                                         delivery_timeout=self.delivery_timeout,
                                         on_failure=self._on_delivery_failure)
        self._set_state(CaptureState.RECORDING)
        self.publisher.publish("started", self.session_id)
        logger.info(f"Recording session {self.session_id}")
        return self.session_id

    def _fail(self, error: BaseException) -> None:
        self.last_error = error
        self._set_state(CaptureState.ERROR)
        self.publisher.publish("error", self.session_id, error=str(error))

    async def _deliver(self, chunk: AudioChunk):
        return await self.api.append(self.session_id, chunk)

    def pause(self) -> None:
        self._transition((CaptureState.RECORDING,), CaptureState.PAUSED, "pause")
        self.capture.pause()
        self.publisher.publish("paused", self.session_id)

    def resume(self) -> None:
        self._transition((CaptureState.PAUSED,), CaptureState.RECORDING, "resume")
        self.capture.resume()
        self.publisher.publish("resumed", self.session_id)

    def _on_audio_event(self, event: AudioEvent) -> None:
        """Capture thread callback."""
        state = self.state
        # buffers read while stop() releases the device still belong to the recording
        if state not in (CaptureState.RECORDING, CaptureState.STOPPING):
            return
        self.segmenter.on_audio_event(event)
        if state is CaptureState.RECORDING and self.capture.recorded_seconds >= self.max_session_seconds:
            self._trigger_auto_stop(f"Maximum duration of {self.max_session_seconds}s reached")

    def _on_chunk(self, chunk: AudioChunk) -> None:
        sequencer = self.sequencer
        if sequencer is None:
            return
        queued = sequencer.enqueue(chunk)
        self.publisher.publish("chunk", self.session_id,
                               sequence_number=chunk.sequence_number,
                               duration_seconds=chunk.duration_seconds,
                               final=chunk.final,
                               queued=queued)

    def _on_delivery_failure(self, outcome: DeliveryOutcome) -> None:
        """Sequencer worker callback."""
        if outcome.error == CapacityExceeded.code:
            self._trigger_auto_stop(f"Server refused chunk {outcome.sequence_number}, session is full")

    def _trigger_auto_stop(self, reason: str) -> None:
        with self._lock:
            if self._auto_stop_thread is not None or self.state.is_terminal:
                return
            logger.info(f"{reason}, stopping")
            self._auto_stop_thread = threading.Thread(target=self._auto_stop, daemon=True)
            self._auto_stop_thread.name = "AutoStopThread"
        self._auto_stop_thread.start()

    def wait_for_auto_stop(self, timeout: Optional[float] = None) -> bool:
        """Block until a triggered auto-stop finished; False if none was triggered."""
        thread = self._auto_stop_thread
        if thread is None:
            return False
        thread.join(timeout)
        return not thread.is_alive()

    def _auto_stop(self) -> None:
        try:
            self.stop()
        except InvalidStateTransition:
            logger.debug("Auto-stop skipped, recording already ended")
        except Exception as e:
            logger.error(f"Auto-stop failed: {e}", exc_info=True)

    def stop(self) -> str:
        """Stop recording, upload the remainder and return the final transcript.

        Raises:
            ChunkscribeError: Finalize failed; the controller is then ABORTED
        """
        self._transition((CaptureState.RECORDING, CaptureState.PAUSED), CaptureState.STOPPING, "stop")
        self.publisher.publish("stopping", self.session_id)

        self.capture.stop_recording()
        self.segmenter.flush()
        if not self.sequencer.drain(self.drain_timeout):
            logger.warning(f"Finalizing {self.session_id} with uploads still pending")
        self.sequencer.shutdown()
        failed = len(self.sequencer.failed)
        if failed:
            logger.warning(f"{failed} chunks of {self.session_id} were not delivered")

        try:
            self.result = self._run(self.api.finalize(self.session_id))
        except Exception as e:
            logger.error(f"Finalize of {self.session_id} failed: {e}")
            self.last_error = e
            self._set_state(CaptureState.ABORTED)
            self.publisher.publish("aborted", self.session_id, error=str(e))
            raise

        with self._lock:
            if self.state is CaptureState.STOPPING:
                self.state = CaptureState.COMPLETED
        self.publisher.publish("completed", self.session_id,
                               parts=self.result.part_count,
                               failed_parts=list(self.result.failed_parts))
        logger.info(f"Session {self.session_id} completed with {self.result.part_count} parts")
        return self.result.transcript

    def preview(self, n: int = 3) -> str:
        """Transcription of the most recent parts while still recording."""
        with self._lock:
            if self.state not in (CaptureState.RECORDING, CaptureState.PAUSED):
                raise InvalidStateTransition(f"Cannot preview while {self.state.value}")
        return self._run(self.api.partial(self.session_id, n))

    def cancel(self) -> None:
        """Drop everything and abort; the server cancel runs in the background."""
        with self._lock:
            if self.state.is_terminal:
                raise InvalidStateTransition(f"Cannot cancel while {self.state.value}")
            self.state = CaptureState.ABORTED

        if self.capture is not None and self.capture.is_recording:
            self.capture.stop_recording()
        self.segmenter.clear()
        if self.sequencer is not None:
            self.sequencer.cancel()
            self.sequencer.shutdown(wait=False)

        if self.session_id:
            self._cancel_thread = threading.Thread(target=self._cancel_remote,
                                                   args=(self.session_id,), daemon=True)
            self._cancel_thread.name = "CancelSessionThread"
            self._cancel_thread.start()

        self.publisher.publish("aborted", self.session_id, cancelled=True)
        logger.info(f"Recording {self.session_id} cancelled")

    def _cancel_remote(self, session_id: str) -> None:
        try:
            self._run(self.api.cancel(session_id))
        except Exception as e:
            logger.warning(f"Server cancel of {session_id} failed: {e}")
