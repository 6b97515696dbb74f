"""Session registry holding the ordered parts of in-flight recordings."""

import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Tuple

from ..errors import (
    CapacityExceeded,
    ChunkTooLarge,
    SessionClosed,
    SessionNotFound,
    ValidationError,
)
from ..models.audio import AudioEncoding
from ..models.session import Part, Session, SessionStatus
from ..storage.part_storage import PartStorage, validate_identifier

logger = logging.getLogger(__name__)

SessionKey = Tuple[str, str]


class _SessionEntry:
    """A session plus the lock that serializes its mutations."""

    __slots__ = ("session", "lock", "cancelled")

    def __init__(self, session: Session):
        self.session = session
        self.lock = threading.Lock()
        self.cancelled = threading.Event()


class SessionStore:
    """Registry of sessions keyed by ``(owner_id, session_id)``.

    Index assignment happens under the lock of the session's own entry, so
    concurrent or retried appends for one session can never produce duplicate
    or missing indices. The registry lock only guards dict lookups and
    inserts; no I/O happens while it is held.
    """

    def __init__(self,
                 storage: PartStorage,
                 max_parts: int = 180,
                 max_part_bytes: int = 25 * 1024 * 1024,
                 retired_capacity: int = 4096):
        self.storage = storage
        self.max_parts = max_parts
        self.max_part_bytes = max_part_bytes
        self.retired_capacity = retired_capacity

        self._registry_lock = threading.Lock()
        self._entries: Dict[SessionKey, _SessionEntry] = {}
        self._retired: "OrderedDict[SessionKey, Session]" = OrderedDict()

        logger.info(f"SessionStore initialized: max_parts={max_parts}, max_part_bytes={max_part_bytes}")

    def exists(self, owner_id: str, session_id: str) -> bool:
        key = (owner_id, session_id)
        with self._registry_lock:
            return key in self._entries or key in self._retired

    def create(self, owner_id: str, session_id: str) -> Session:
        """Register a new session in ``RECORDING`` state.

        Creating a session that is already live returns it unchanged; reusing
        the id of a finished session is refused.
        """
        validate_identifier(owner_id, "owner id")
        validate_identifier(session_id, "session id")
        key = (owner_id, session_id)
        with self._registry_lock:
            if key in self._retired:
                raise SessionNotFound(f"Session {session_id} has already ended")
            entry = self._entries.get(key)
            if entry is None:
                entry = _SessionEntry(Session(session_id=session_id, owner_id=owner_id))
                self._entries[key] = entry
                logger.info(f"Created session {session_id} for owner {owner_id}")
            return entry.session

    def _entry(self, owner_id: str, session_id: str) -> _SessionEntry:
        key = (owner_id, session_id)
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry
            if key in self._retired:
                status = self._retired[key].status.value
                raise SessionNotFound(f"Session {session_id} is {status}")
        raise SessionNotFound(f"Unknown session: {session_id}")

    def get(self, owner_id: str, session_id: str) -> Session:
        return self._entry(owner_id, session_id).session

    def check_payload(self, data: bytes) -> None:
        """Raise ValidationError for an empty or oversized part."""
        if not data:
            raise ValidationError("Empty audio chunk")
        if len(data) > self.max_part_bytes:
            raise ChunkTooLarge(f"Chunk of {len(data)} bytes exceeds limit of {self.max_part_bytes}")

    def discard_if_empty(self, owner_id: str, session_id: str) -> bool:
        """Forget a live session that never accepted a part.

        The id is not retired, so it can be created again. Returns False if
        the session is unknown or already holds parts.
        """
        key = (owner_id, session_id)
        with self._registry_lock:
            entry = self._entries.get(key)
        if entry is None:
            return False
        with entry.lock:
            session = entry.session
            if session.parts or session.status is not SessionStatus.RECORDING:
                return False
            # appends already holding this entry must see it as gone
            session.status = SessionStatus.ABORTED
            entry.cancelled.set()
            with self._registry_lock:
                self._entries.pop(key, None)
        logger.info(f"Discarded empty session {session_id} of owner {owner_id}")
        return True

    def append(self, owner_id: str, session_id: str, data: bytes, encoding: AudioEncoding) -> Part:
        """Store one part and assign it the next index.

        Raises:
            ValidationError: Empty or oversized payload, or encoding not parsed
            CapacityExceeded: Session already holds ``max_parts`` parts
            SessionClosed: Session is being finalized
            SessionNotFound: Unknown or ended session
            StorageFailure: Payload could not be written; the index is not consumed
        """
        if not isinstance(encoding, AudioEncoding):
            raise ValidationError(f"Encoding must be an AudioEncoding, got {encoding!r}")
        self.check_payload(data)

        entry = self._entry(owner_id, session_id)
        with entry.lock:
            session = entry.session
            if session.status is not SessionStatus.RECORDING:
                if session.status.is_terminal:
                    raise SessionNotFound(f"Session {session_id} is {session.status.value}")
                raise SessionClosed(f"Session {session_id} is {session.status.value}")
            if len(session.parts) >= self.max_parts:
                raise CapacityExceeded(f"Session {session_id} reached the limit of {self.max_parts} parts")

            index = len(session.parts)
            ref = self.storage.write(owner_id, session_id, index, data, encoding)
            part = Part(index=index, payload_ref=ref, stored_at=datetime.now())
            session.parts.append(part)

        logger.debug(f"Stored part {index} of {session_id} ({len(data)} bytes, {encoding.content_type})")
        return part

    def recent_parts(self, owner_id: str, session_id: str, n: int) -> List[Part]:
        """Snapshot of the last ``n`` parts, oldest first."""
        entry = self._entry(owner_id, session_id)
        with entry.lock:
            if entry.session.status.is_terminal:
                raise SessionNotFound(f"Session {session_id} is {entry.session.status.value}")
            if n <= 0:
                return []
            return list(entry.session.parts[-n:])

    def begin_finalize(self, owner_id: str, session_id: str) -> List[Part]:
        """Move the session to ``FINALIZING`` and return its parts in index order.

        Only one caller can win this transition; later callers get
        ``SessionNotFound`` so no transcript is produced twice.
        """
        entry = self._entry(owner_id, session_id)
        with entry.lock:
            session = entry.session
            if session.status is not SessionStatus.RECORDING:
                raise SessionNotFound(f"Session {session_id} is already {session.status.value}")
            session.status = SessionStatus.FINALIZING
            logger.info(f"Session {session_id} finalizing with {len(session.parts)} parts")
            return list(session.parts)

    def is_cancelled(self, owner_id: str, session_id: str) -> bool:
        key = (owner_id, session_id)
        with self._registry_lock:
            entry = self._entries.get(key)
        return entry is None or entry.cancelled.is_set()

    def read_payload(self, part: Part) -> bytes:
        return self.storage.read(part.payload_ref)

    def complete(self, owner_id: str, session_id: str) -> Session:
        """Mark a finalizing session ``COMPLETED`` and retire it.

        Raises:
            SessionNotFound: If the session was cancelled while finalizing
        """
        entry = self._entry(owner_id, session_id)
        with entry.lock:
            if entry.cancelled.is_set():
                raise SessionNotFound(f"Session {session_id} was cancelled during finalize")
            session = self._close(entry, SessionStatus.COMPLETED)
        self._retire(session)
        return session

    def abort(self, owner_id: str, session_id: str) -> Session:
        """Mark any non-terminal session ``ABORTED`` and retire it."""
        entry = self._entry(owner_id, session_id)
        entry.cancelled.set()
        with entry.lock:
            session = self._close(entry, SessionStatus.ABORTED)
        self._retire(session)
        return session

    def _close(self, entry: _SessionEntry, status: SessionStatus) -> Session:
        session = entry.session
        if session.status.is_terminal:
            raise SessionNotFound(f"Session {session.session_id} is {session.status.value}")
        session.status = status
        session.closed_at = datetime.now()
        session.parts = []
        return session

    def _retire(self, session: Session) -> None:
        with self._registry_lock:
            self._entries.pop(session.key, None)
            self._retired[session.key] = session
            while len(self._retired) > self.retired_capacity:
                self._retired.popitem(last=False)
        logger.info(f"Session {session.session_id} retired as {session.status.value}")

    def live_session_count(self) -> int:
        with self._registry_lock:
            return len(self._entries)
