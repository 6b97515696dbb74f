"""Server side: session store, transcription assembly and the HTTP binding."""

from .assembler import ConcurrencyLimiter, TranscriptionAssembler, join_transcript
from .cleanup import CleanupManager
from .entitlements import AllowAllEntitlements, EntitlementChecker, QuotaEntitlements
from .service import TranscriptionSessionService, generate_session_id
from .store import SessionStore

__all__ = [
    "ConcurrencyLimiter",
    "TranscriptionAssembler",
    "join_transcript",
    "CleanupManager",
    "AllowAllEntitlements",
    "EntitlementChecker",
    "QuotaEntitlements",
    "TranscriptionSessionService",
    "generate_session_id",
    "SessionStore",
]
