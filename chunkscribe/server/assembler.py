"""Ordered transcription of stored parts into one transcript."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import (
    ChunkscribeError,
    TranscriptionPartialFailure,
    TranscriptionTimeout,
    TranscriptionUnavailable,
)
from ..models.session import Part, PartOutcome
from ..transcription.base import AbstractTranscriptionBackend

logger = logging.getLogger(__name__)

PLACEHOLDER_TRANSCRIPT = " "


class ConcurrencyLimiter:
    """Bounds the number of backend calls in flight across all sessions."""

    def __init__(self, max_concurrent: int = 4, acquire_timeout: float = 60.0):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.acquire_timeout = acquire_timeout
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._in_flight = 0
        self._lock = threading.Lock()

    @contextmanager
    def slot(self, chunk_id: str):
        if not self._semaphore.acquire(timeout=self.acquire_timeout):
            raise TranscriptionTimeout(
                f"No transcription slot for {chunk_id} after {self.acquire_timeout}s")
        with self._lock:
            self._in_flight += 1
        try:
            yield
        finally:
            with self._lock:
                self._in_flight -= 1
            self._semaphore.release()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight


def join_transcript(texts: Sequence[str]) -> str:
    """Join per-part texts in order; an empty result becomes a single space."""
    transcript = " ".join(t.strip() for t in texts if t and t.strip())
    return transcript or PLACEHOLDER_TRANSCRIPT


class TranscriptionAssembler:
    """Transcribes parts one by one, in index order, and concatenates the text.

    A failure limited to one part is logged and that part contributes an empty
    string. Only ``TranscriptionUnavailable`` aborts the whole assembly.
    """

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 read_payload: Callable[[Part], bytes],
                 limiter: Optional[ConcurrencyLimiter] = None):
        self.backend = backend
        self.read_payload = read_payload
        self.limiter = limiter or ConcurrencyLimiter()

    def check_available(self) -> None:
        self.backend.check_available()

    def transcribe_part(self, session_id: str, part: Part) -> PartOutcome:
        chunk_id = f"{session_id}.{part.index:05d}"
        try:
            audio = self.read_payload(part)
            with self.limiter.slot(chunk_id):
                result = self.backend.transcribe(chunk_id, audio, part.payload_ref.encoding)
        except TranscriptionUnavailable:
            raise
        except TranscriptionPartialFailure as e:
            logger.warning(f"Part {chunk_id} failed ({e.code}): {e}")
            return PartOutcome(index=part.index, text="", error=e.code)
        except ChunkscribeError as e:
            logger.error(f"Part {chunk_id} could not be transcribed: {e}", exc_info=True)
            return PartOutcome(index=part.index, text="", error=e.code)
        except Exception as e:
            logger.error(f"Unexpected error transcribing {chunk_id}: {e}", exc_info=True)
            return PartOutcome(index=part.index, text="", error=type(e).__name__)

        text = (result.text or "").strip() if result else ""
        logger.debug(f"Part {chunk_id}: '{text[:50]}' via {self.backend.service_name}")
        return PartOutcome(index=part.index, text=text)

    def transcribe_parts(self,
                         session_id: str,
                         parts: Sequence[Part],
                         is_cancelled: Optional[Callable[[], bool]] = None) -> List[PartOutcome]:
        """Transcribe ``parts`` sequentially in index order.

        Raises:
            TranscriptionUnavailable: If the backend can not be used at all
        """
        outcomes = []
        for part in sorted(parts, key=lambda p: p.index):
            if is_cancelled is not None and is_cancelled():
                logger.info(f"Assembly of {session_id} stopped after {len(outcomes)} parts (cancelled)")
                break
            outcomes.append(self.transcribe_part(session_id, part))
        return outcomes

    def assemble(self,
                 session_id: str,
                 parts: Sequence[Part],
                 is_cancelled: Optional[Callable[[], bool]] = None) -> Tuple[str, List[PartOutcome]]:
        """Return the joined transcript and the per-part outcomes."""
        start_time = time.time()
        self.check_available()
        outcomes = self.transcribe_parts(session_id, parts, is_cancelled)
        transcript = join_transcript([o.text for o in outcomes])
        failed = [o.index for o in outcomes if o.failed]
        logger.info(f"Assembled {session_id}: {len(outcomes)} parts, {len(failed)} failed, "
                    f"{len(transcript)} chars in {time.time() - start_time:.2f}s")
        return transcript, outcomes
