"""Server-side operations on recording sessions."""

import logging
import random
import string
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Optional, Union

from ..errors import ChunkscribeError, EntitlementDenied, SessionNotFound, TranscriptionUnavailable
from ..models.audio import AudioEncoding
from ..models.session import AppendResult, FinalizeResult
from ..storage.part_storage import (
    FileSystemPartStorage,
    InMemoryPartStorage,
    PartStorage,
    validate_identifier,
)
from ..transcription import create_backend
from ..transcription.base import AbstractTranscriptionBackend
from .assembler import ConcurrencyLimiter, TranscriptionAssembler, join_transcript
from .cleanup import CleanupManager
from .entitlements import AllowAllEntitlements, EntitlementChecker, create_entitlements
from .store import SessionStore

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Timestamp-based id with a random suffix, e.g. ``20250101_120000_a1b2``."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{timestamp}_{random_suffix}"


class TranscriptionSessionService:
    """Start, append, preview, finalize and cancel recording sessions.

    Request handlers call these methods from any thread. Finalize work runs
    on a dedicated executor so long assemblies never occupy request threads.
    """

    def __init__(self,
                 storage: PartStorage,
                 backend: AbstractTranscriptionBackend,
                 entitlements: Optional[EntitlementChecker] = None,
                 max_parts: int = 180,
                 max_part_bytes: int = 25 * 1024 * 1024,
                 partial_max_parts: int = 3,
                 retired_capacity: int = 4096,
                 max_concurrent_calls: int = 4,
                 request_timeout: float = 60.0,
                 finalize_workers: int = 2):
        self.storage = storage
        self.backend = backend
        self.entitlements = entitlements or AllowAllEntitlements()
        self.partial_max_parts = partial_max_parts

        self.store = SessionStore(storage,
                                  max_parts=max_parts,
                                  max_part_bytes=max_part_bytes,
                                  retired_capacity=retired_capacity)
        self.limiter = ConcurrencyLimiter(max_concurrent_calls, acquire_timeout=request_timeout)
        self.assembler = TranscriptionAssembler(backend, self.store.read_payload, self.limiter)
        self.cleanup = CleanupManager(storage)

        self._start_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=finalize_workers,
                                            thread_name_prefix="finalize")
        logger.info(f"TranscriptionSessionService initialized with backend: {backend.service_name}")

    @classmethod
    def from_config(cls, config) -> "TranscriptionSessionService":
        backend_name = config.get('storage.backend', 'filesystem')
        if backend_name == "filesystem":
            storage = FileSystemPartStorage(config.get_storage_directory())
        elif backend_name == "memory":
            storage = InMemoryPartStorage()
        else:
            raise ValueError(f"Unknown storage backend: {backend_name}")

        return cls(
            storage=storage,
            backend=create_backend(config),
            entitlements=create_entitlements(config),
            max_parts=int(config.get('server.max_parts', 180)),
            max_part_bytes=int(config.get('server.max_part_bytes', 25 * 1024 * 1024)),
            partial_max_parts=int(config.get('server.partial_max_parts', 3)),
            retired_capacity=int(config.get('server.retired_capacity', 4096)),
            max_concurrent_calls=int(config.get('transcription.max_concurrent_calls', 4)),
            request_timeout=float(config.get('transcription.request_timeout_seconds', 60.0)),
            finalize_workers=int(config.get('transcription.finalize_workers', 2)),
        )

    def _open_session(self, owner_id: str, session_id: str) -> bool:
        """Create the session if needed; True if this call created it."""
        with self._start_lock:
            if self.store.exists(owner_id, session_id):
                # live sessions are reused, retired ones are rejected by the store
                self.store.create(owner_id, session_id)
                return False
            if not self.entitlements.can_use(owner_id):
                logger.warning(f"Owner {owner_id} is not entitled to start a session")
                raise EntitlementDenied(f"Owner {owner_id} has no remaining sessions")
            self.store.create(owner_id, session_id)
            self.entitlements.record_use(owner_id)
            return True

    def _discard_new_session(self, owner_id: str, session_id: str) -> None:
        with self._start_lock:
            if self.store.discard_if_empty(owner_id, session_id):
                self.entitlements.release_use(owner_id)

    def start_session(self, owner_id: str, session_id: Optional[str] = None) -> str:
        """Create a session explicitly and return its id.

        Raises:
            EntitlementDenied: Owner may not start a session; nothing is allocated
            ValidationError: Malformed owner or session id
            SessionNotFound: ``session_id`` belongs to a session that already ended
        """
        validate_identifier(owner_id, "owner id")
        session_id = session_id or generate_session_id()
        validate_identifier(session_id, "session id")
        self._open_session(owner_id, session_id)
        return session_id

    def append(self,
               owner_id: str,
               session_id: str,
               data: bytes,
               encoding: Union[AudioEncoding, str]) -> AppendResult:
        """Store one chunk, creating the session on its first accepted append.

        A first append that is rejected leaves no session behind and does
        not count against the owner's entitlement.
        """
        if not isinstance(encoding, AudioEncoding):
            encoding = AudioEncoding.from_content_type(encoding)
        validate_identifier(owner_id, "owner id")
        validate_identifier(session_id, "session id")
        self.store.check_payload(data)

        created = False
        if not self.store.exists(owner_id, session_id):
            created = self._open_session(owner_id, session_id)

        try:
            part = self.store.append(owner_id, session_id, data, encoding)
        except ChunkscribeError:
            if created:
                self._discard_new_session(owner_id, session_id)
            raise
        return AppendResult(index=part.index, part_count=part.index + 1)

    def clamp_partial_count(self, n: Optional[int]) -> int:
        if n is None:
            return self.partial_max_parts
        return max(1, min(int(n), self.partial_max_parts))

    def partial(self, owner_id: str, session_id: str, n: Optional[int] = None) -> str:
        """Transcribe only the most recent parts; the session is not modified."""
        count = self.clamp_partial_count(n)
        parts = self.store.recent_parts(owner_id, session_id, count)
        if not parts:
            return ""
        self.assembler.check_available()
        outcomes = self.assembler.transcribe_parts(session_id, parts)
        text = join_transcript([o.text for o in outcomes])
        return text.strip()

    def submit_finalize(self, owner_id: str, session_id: str) -> "Future[FinalizeResult]":
        return self._executor.submit(self._finalize, owner_id, session_id)

    def finalize(self, owner_id: str, session_id: str) -> FinalizeResult:
        """Assemble the transcript of a session and close it.

        Raises:
            SessionNotFound: Unknown, already finalized, finalizing or cancelled
            TranscriptionUnavailable: Backend can not be used; the session is aborted
        """
        return self.submit_finalize(owner_id, session_id).result()

    def _finalize(self, owner_id: str, session_id: str) -> FinalizeResult:
        parts = self.store.begin_finalize(owner_id, session_id)
        try:
            transcript, outcomes = self.assembler.assemble(
                session_id, parts,
                is_cancelled=lambda: self.store.is_cancelled(owner_id, session_id))
            self.store.complete(owner_id, session_id)
        except TranscriptionUnavailable:
            logger.error(f"Transcription unavailable, aborting session {session_id}")
            self._abort_quietly(owner_id, session_id)
            raise
        except SessionNotFound:
            logger.info(f"Session {session_id} was cancelled during finalize")
            raise
        except Exception:
            logger.error(f"Finalize of {session_id} failed", exc_info=True)
            self._abort_quietly(owner_id, session_id)
            raise
        finally:
            self.cleanup.purge(owner_id, session_id, reason="finalize")

        failed = [o.index for o in outcomes if o.failed]
        logger.info(f"Session {session_id} completed: {len(parts)} parts, {len(failed)} failed")
        return FinalizeResult(session_id=session_id,
                              transcript=transcript,
                              part_count=len(parts),
                              failed_parts=failed)

    def _abort_quietly(self, owner_id: str, session_id: str) -> None:
        try:
            self.store.abort(owner_id, session_id)
        except SessionNotFound:
            pass

    def cancel(self, owner_id: str, session_id: str) -> bool:
        """Drop every part and mark the session aborted without transcribing.

        Raises:
            SessionNotFound: Unknown or already ended session
        """
        self.store.abort(owner_id, session_id)
        self.cleanup.purge(owner_id, session_id, reason="cancel")
        return True

    def shutdown(self, wait: bool = True) -> None:
        logger.info("Shutting down session service")
        self._executor.shutdown(wait=wait)
        self.backend.cleanup()
