import re
import threading
import pytest
from unittest.mock import patch

from chunkscribe.errors import (
    CapacityExceeded,
    ChunkTooLarge,
    EntitlementDenied,
    InvalidAudio,
    SessionNotFound,
    StorageFailure,
    TranscriptionUnavailable,
    UnsupportedEncoding,
    ValidationError,
)
from chunkscribe.models.audio import AudioEncoding
from chunkscribe.server.cleanup import CleanupManager
from chunkscribe.server.entitlements import QuotaEntitlements
from chunkscribe.server.service import TranscriptionSessionService, generate_session_id
from chunkscribe.storage.part_storage import InMemoryPartStorage


@pytest.mark.unit
class TestStartAndAppend:

    def test_generated_session_id_format(self):
        assert re.match(r"^\d{8}_\d{6}_[a-z0-9]{4}$", generate_session_id())

    def test_start_session_returns_usable_id(self, service):
        session_id = service.start_session("alice")
        result = service.append("alice", session_id, b"A", "audio/wav")
        assert result.index == 0
        assert result.part_count == 1

    def test_lazy_creation_on_first_append(self, service):
        assert service.append("alice", "lazy", b"A", "audio/webm;codecs=opus").index == 0
        assert service.append("alice", "lazy", b"B", AudioEncoding.WEBM).index == 1

    def test_unsupported_content_type(self, service, memory_storage):
        with pytest.raises(UnsupportedEncoding):
            service.append("alice", "s1", b"A", "video/mp4")
        assert not service.store.exists("alice", "s1")

    def test_capacity_rejection(self, service):
        for i in range(5):
            service.append("alice", "s1", bytes([65 + i]), "audio/wav")
        with pytest.raises(CapacityExceeded):
            service.append("alice", "s1", b"Z", "audio/wav")
        assert [p.index for p in service.store.get("alice", "s1").parts] == [0, 1, 2, 3, 4]
        assert service.finalize("alice", "s1").transcript == "A B C D E"

    @pytest.mark.parametrize("payload, error", [
        (b"", ValidationError),
        (b"x" * (1024 * 1024 + 1), ChunkTooLarge),
    ])
    def test_rejected_first_append_creates_nothing(self, memory_storage, fake_backend, payload, error):
        entitlements = QuotaEntitlements(free_sessions=1)
        service = TranscriptionSessionService(memory_storage, fake_backend, entitlements=entitlements,
                                              max_part_bytes=1024 * 1024)
        try:
            with pytest.raises(error):
                service.append("bob", "s1", payload, "audio/wav")
            assert service.store.live_session_count() == 0
            assert entitlements.used("bob") == 0
            assert service.append("bob", "s1", b"A", "audio/wav").index == 0
        finally:
            service.shutdown()

    def test_storage_failure_on_first_append_is_rolled_back(self, memory_storage, fake_backend):
        entitlements = QuotaEntitlements(free_sessions=1)
        service = TranscriptionSessionService(memory_storage, fake_backend, entitlements=entitlements)
        try:
            with patch.object(memory_storage, "write", side_effect=StorageFailure("disk full")):
                with pytest.raises(StorageFailure):
                    service.append("bob", "s1", b"A", "audio/wav")
            assert service.store.live_session_count() == 0
            assert entitlements.used("bob") == 0

            result = service.append("bob", "s1", b"A", "audio/wav")
            assert result.index == 0
            assert entitlements.used("bob") == 1
        finally:
            service.shutdown()

    def test_storage_failure_keeps_existing_session(self, service, memory_storage):
        service.append("alice", "s1", b"A", "audio/wav")
        with patch.object(memory_storage, "write", side_effect=StorageFailure("disk full")):
            with pytest.raises(StorageFailure):
                service.append("alice", "s1", b"B", "audio/wav")
        assert service.append("alice", "s1", b"C", "audio/wav").index == 1
        assert service.finalize("alice", "s1").transcript == "A C"

    def test_entitlement_denial_allocates_nothing(self, memory_storage, fake_backend):
        entitlements = QuotaEntitlements(free_sessions=1)
        service = TranscriptionSessionService(memory_storage, fake_backend, entitlements=entitlements)
        try:
            service.start_session("alice", "first")
            with pytest.raises(EntitlementDenied):
                service.start_session("alice", "second")
            with pytest.raises(EntitlementDenied):
                service.append("alice", "third", b"A", "audio/wav")
            assert not service.store.exists("alice", "second")
            assert not service.store.exists("alice", "third")
            assert memory_storage.part_count("alice", "third") == 0
            # continuing the existing session does not count as a new one
            service.append("alice", "first", b"A", "audio/wav")
        finally:
            service.shutdown()

    def test_subscribers_are_not_limited(self, memory_storage, fake_backend):
        entitlements = QuotaEntitlements(subscribers=["vip"], free_sessions=0)
        service = TranscriptionSessionService(memory_storage, fake_backend, entitlements=entitlements)
        try:
            for i in range(3):
                service.start_session("vip", f"s{i}")
            with pytest.raises(EntitlementDenied):
                service.start_session("alice")
        finally:
            service.shutdown()


@pytest.mark.unit
class TestPartial:

    def test_last_n_parts(self, service):
        for payload in (b"A", b"B", b"C", b"D"):
            service.append("alice", "s1", payload, "audio/wav")
        assert service.partial("alice", "s1", 2) == "C D"
        assert len(service.store.get("alice", "s1").parts) == 4

    def test_n_is_clamped(self, service):
        for payload in (b"A", b"B", b"C", b"D"):
            service.append("alice", "s1", payload, "audio/wav")
        assert service.partial("alice", "s1", 10) == "B C D"
        assert service.partial("alice", "s1", 0) == "D"
        assert service.partial("alice", "s1", -5) == "D"

    def test_no_parts_is_empty_string(self, service):
        service.start_session("alice", "s1")
        assert service.partial("alice", "s1", 3) == ""

    def test_failed_part_is_skipped(self, service, fake_backend):
        fake_backend.script[b"B"] = InvalidAudio("bad")
        for payload in (b"A", b"B", b"C"):
            service.append("alice", "s1", payload, "audio/wav")
        assert service.partial("alice", "s1", 3) == "A C"

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFound):
            service.partial("alice", "missing", 1)


@pytest.mark.unit
class TestFinalize:

    def test_transcript_in_index_order_and_purged(self, service, memory_storage):
        for payload in (b"A", b"B", b"C"):
            service.append("alice", "s1", payload, "audio/wav")
        result = service.finalize("alice", "s1")
        assert result.transcript == "A B C"
        assert result.part_count == 3
        assert result.failed_parts == []
        assert memory_storage.part_count("alice", "s1") == 0

    def test_empty_session_gives_placeholder(self, service):
        service.start_session("alice", "s1")
        assert service.finalize("alice", "s1").transcript == " "

    def test_single_part_failure(self, service, fake_backend):
        fake_backend.script[b"B"] = InvalidAudio("bad")
        for payload in (b"A", b"B", b"C"):
            service.append("alice", "s1", payload, "audio/wav")
        result = service.finalize("alice", "s1")
        assert result.transcript == "A C"
        assert result.failed_parts == [1]

    def test_double_finalize(self, service):
        service.append("alice", "s1", b"A", "audio/wav")
        service.finalize("alice", "s1")
        with pytest.raises(SessionNotFound):
            service.finalize("alice", "s1")
        with pytest.raises(SessionNotFound):
            service.append("alice", "s1", b"B", "audio/wav")

    def test_concurrent_finalize_only_one_wins(self, memory_storage, backend_factory):
        backend = backend_factory(delay=0.1)
        service = TranscriptionSessionService(memory_storage, backend, finalize_workers=2)
        try:
            service.append("alice", "s1", b"A", "audio/wav")
            first = service.submit_finalize("alice", "s1")
            second = service.submit_finalize("alice", "s1")
            outcomes = []
            for future in (first, second):
                try:
                    outcomes.append(future.result(timeout=5).transcript)
                except SessionNotFound:
                    outcomes.append("not_found")
            assert sorted(outcomes) == ["A", "not_found"]
        finally:
            service.shutdown()

    def test_unavailable_aborts_and_purges(self, service, fake_backend, memory_storage):
        service.append("alice", "s1", b"A", "audio/wav")
        fake_backend.available = False
        with pytest.raises(TranscriptionUnavailable):
            service.finalize("alice", "s1")
        assert memory_storage.part_count("alice", "s1") == 0
        with pytest.raises(SessionNotFound):
            service.finalize("alice", "s1")

    def test_cleanup_failure_is_swallowed(self, service):
        service.append("alice", "s1", b"A", "audio/wav")
        with patch.object(service.storage, "delete_session", side_effect=OSError("busy")):
            result = service.finalize("alice", "s1")
        assert result.transcript == "A"
        assert service.cleanup.failed_purges == 1

    def test_cancel_during_finalize(self, memory_storage, backend_factory):
        started = threading.Event()
        release = threading.Event()

        class BlockingBackend(backend_factory):
            def transcribe(self, chunk_id, audio, encoding):
                started.set()
                release.wait(5)
                return super().transcribe(chunk_id, audio, encoding)

        service = TranscriptionSessionService(memory_storage, BlockingBackend())
        try:
            service.append("alice", "s1", b"A", "audio/wav")
            service.append("alice", "s1", b"B", "audio/wav")
            future = service.submit_finalize("alice", "s1")
            assert started.wait(5)
            service.cancel("alice", "s1")
            release.set()
            with pytest.raises(SessionNotFound):
                future.result(timeout=5)
            assert len(service.backend.calls) == 1
        finally:
            release.set()
            service.shutdown()


@pytest.mark.unit
class TestCancel:

    def test_cancel_purges_and_closes(self, service, fake_backend, memory_storage):
        for payload in (b"A", b"B", b"C"):
            service.append("alice", "s1", payload, "audio/wav")
        assert service.cancel("alice", "s1") is True
        assert memory_storage.part_count("alice", "s1") == 0
        assert fake_backend.calls == []
        with pytest.raises(SessionNotFound):
            service.finalize("alice", "s1")
        with pytest.raises(SessionNotFound):
            service.partial("alice", "s1", 1)
        with pytest.raises(SessionNotFound):
            service.cancel("alice", "s1")

    def test_cancel_unknown(self, service):
        with pytest.raises(SessionNotFound):
            service.cancel("alice", "never-started")


@pytest.mark.unit
class TestCleanupManager:

    def test_purge_swallows_errors(self):
        storage = InMemoryPartStorage()
        manager = CleanupManager(storage)
        with patch.object(storage, "delete_session", side_effect=PermissionError("nope")):
            assert manager.purge("alice", "s1", "cancel") is False
        assert manager.failed_purges == 1
        assert manager.purge("alice", "s1", "cancel") is True
