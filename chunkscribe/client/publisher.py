"""Session event publisher module for pub/sub event publishing."""

import logging
from typing import Any, Callable, Optional

from pubsub import pub

from ..models.events import SessionEvent

logger = logging.getLogger(__name__)

SESSION_TOPIC = "recording.session"


class SessionEventPublisher:
    """Publishes recording lifecycle events using pubsub.pub."""

    def __init__(self, topic: str = SESSION_TOPIC):
        """Initialize session event publisher.

        Args:
            topic: Pub/sub topic name for session events
        """
        self.topic = topic
        logger.info(f"SessionEventPublisher initialized with topic: {topic}")

    def publish(self, event_type: str, session_id: Optional[str] = None, **metadata: Any) -> SessionEvent:
        event = SessionEvent(event_type=event_type, session_id=session_id, metadata=metadata)
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published session event: {event_type} ({session_id})")
        return event

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Register ``listener(event)``; pubsub keeps only a weak reference."""
        pub.subscribe(listener, self.topic)

    def unsubscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        pub.unsubscribe(listener, self.topic)
