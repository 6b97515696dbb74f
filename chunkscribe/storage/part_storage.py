"""Ephemeral storage for the audio parts of in-flight sessions."""

import logging
import re
import shutil
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Tuple

from ..errors import StorageFailure, ValidationError
from ..models.audio import AudioEncoding
from ..models.session import PayloadRef

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def validate_identifier(value: str, kind: str) -> str:
    """Check that an owner or session id is safe to use as a path component."""
    if not isinstance(value, str) or not _SAFE_ID.match(value) or ".." in value:
        raise ValidationError(f"Invalid {kind}: {value!r}")
    return value


def part_filename(index: int, encoding: AudioEncoding) -> str:
    return f"part-{index:05d}.{encoding.extension}"


class PartStorage(ABC):
    """Ordered bytes retrievable by reference, grouped by (owner, session)."""

    @abstractmethod
    def write(self, owner_id: str, session_id: str, index: int,
              data: bytes, encoding: AudioEncoding) -> PayloadRef:
        """Persist one part.

        Raises:
            StorageFailure: If the bytes could not be written
        """

    @abstractmethod
    def read(self, ref: PayloadRef) -> bytes:
        """Return the bytes behind a reference."""

    @abstractmethod
    def delete_session(self, owner_id: str, session_id: str) -> None:
        """Remove every part of a session."""


class FileSystemPartStorage(PartStorage):
    """Stores parts as ``<root>/<owner>/<session>/part-00000.<ext>`` files."""

    def __init__(self, root_dir: str = "./data/sessions"):
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileSystemPartStorage initialized with root: {self.root_dir}")

    def session_path(self, owner_id: str, session_id: str) -> Path:
        return self.root_dir / owner_id / session_id

    def write(self, owner_id: str, session_id: str, index: int,
              data: bytes, encoding: AudioEncoding) -> PayloadRef:
        session_path = self.session_path(owner_id, session_id)
        file_path = session_path / part_filename(index, encoding)
        try:
            session_path.mkdir(parents=True, exist_ok=True)
            with open(file_path, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Error writing part {file_path}: {e}")
            try:
                file_path.unlink()
            except OSError:
                pass
            raise StorageFailure(f"Could not store part {index} of {session_id}: {e}") from e

        logger.debug(f"Part saved: {file_path} ({len(data)} bytes)")
        return PayloadRef(key=str(file_path), encoding=encoding, size_bytes=len(data))

    def read(self, ref: PayloadRef) -> bytes:
        with open(ref.key, 'rb') as f:
            return f.read()

    def delete_session(self, owner_id: str, session_id: str) -> None:
        session_path = self.session_path(owner_id, session_id)
        if session_path.exists():
            shutil.rmtree(session_path)
            logger.info(f"Removed session directory: {session_path}")
        owner_path = session_path.parent
        try:
            owner_path.rmdir()
        except OSError:
            # other sessions of the same owner still live here
            pass


class InMemoryPartStorage(PartStorage):
    """Keeps parts in a dict; used for tests and single-process deployments."""

    def __init__(self):
        self._lock = threading.Lock()
        self._blobs: Dict[Tuple[str, str], Dict[str, bytes]] = {}

    def write(self, owner_id: str, session_id: str, index: int,
              data: bytes, encoding: AudioEncoding) -> PayloadRef:
        key = f"{owner_id}/{session_id}/{part_filename(index, encoding)}"
        with self._lock:
            self._blobs.setdefault((owner_id, session_id), {})[key] = bytes(data)
        return PayloadRef(key=key, encoding=encoding, size_bytes=len(data))

    def read(self, ref: PayloadRef) -> bytes:
        owner_id, session_id, _ = ref.key.split("/", 2)
        with self._lock:
            try:
                return self._blobs[(owner_id, session_id)][ref.key]
            except KeyError:
                raise FileNotFoundError(ref.key) from None

    def delete_session(self, owner_id: str, session_id: str) -> None:
        with self._lock:
            self._blobs.pop((owner_id, session_id), None)

    def part_count(self, owner_id: str, session_id: str) -> int:
        with self._lock:
            return len(self._blobs.get((owner_id, session_id), {}))
