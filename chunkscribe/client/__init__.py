"""Client side: recording controller, ordered uploads and session API clients."""

from .controller import CaptureController, CaptureState
from .http_client import HttpSessionApi, LocalSessionApi, SessionApi
from .publisher import SESSION_TOPIC, SessionEventPublisher
from .sequencer import DeliveryOutcome, UploadSequencer

__all__ = [
    "CaptureController",
    "CaptureState",
    "HttpSessionApi",
    "LocalSessionApi",
    "SessionApi",
    "SESSION_TOPIC",
    "SessionEventPublisher",
    "DeliveryOutcome",
    "UploadSequencer",
]
