"""Error taxonomy shared by the client and the server."""

from typing import Dict, Type


class ChunkscribeError(Exception):
    """Base class for every error raised by chunkscribe."""

    code = "error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or str(self.args[0])


class ValidationError(ChunkscribeError):
    """Chunk rejected before it was stored."""

    code = "validation_error"


class UnsupportedEncoding(ValidationError):
    """Content type is not one of the accepted audio encodings."""

    code = "unsupported_encoding"


class ChunkTooLarge(ValidationError):
    """Chunk exceeds the per-part size limit."""

    code = "chunk_too_large"


class CapacityExceeded(ChunkscribeError):
    """Session already holds the maximum number of parts."""

    code = "capacity_exceeded"


class EntitlementDenied(ChunkscribeError):
    """Owner is not allowed to start a session."""

    code = "entitlement_denied"


class StorageFailure(ChunkscribeError):
    """Transient error while writing a part; the append may be retried."""

    code = "storage_failure"
    retryable = True


class RequestTimeout(ChunkscribeError):
    """Session server did not answer within the client timeout."""

    code = "request_timeout"
    retryable = True


class SessionNotFound(ChunkscribeError):
    """Unknown, finalized or cancelled session."""

    code = "not_found"


class SessionClosed(ChunkscribeError):
    """Session no longer accepts parts."""

    code = "session_closed"


class TranscriptionPartialFailure(ChunkscribeError):
    """Transcription of a single part failed."""

    code = "transcription_partial_failure"


class RateLimited(TranscriptionPartialFailure):
    """Speech-to-text provider rejected the call with a rate limit."""

    code = "rate_limited"


class TranscriptionTimeout(TranscriptionPartialFailure):
    """Speech-to-text call did not complete in time."""

    code = "transcription_timeout"


class InvalidAudio(TranscriptionPartialFailure):
    """Speech-to-text provider could not decode the audio."""

    code = "invalid_audio"


class TranscriptionUnavailable(ChunkscribeError):
    """Speech-to-text capability is missing or misconfigured."""

    code = "transcription_unavailable"


class DeviceUnavailable(ChunkscribeError):
    """No audio input device, or permission to use it was denied."""

    code = "device_unavailable"


class InvalidStateTransition(ChunkscribeError):
    """Recording operation is not valid in the current state."""

    code = "invalid_state"


def _all_subclasses(cls: Type[ChunkscribeError]):
    for sub in cls.__subclasses__():
        yield sub
        yield from _all_subclasses(sub)


ERRORS_BY_CODE: Dict[str, Type[ChunkscribeError]] = {
    cls.code: cls for cls in _all_subclasses(ChunkscribeError)
}


def error_from_code(code: str, message: str) -> ChunkscribeError:
    """Rebuild an error received over the wire."""
    return ERRORS_BY_CODE.get(code, ChunkscribeError)(message)
