"""Status and note-update publisher for pub/sub consumers."""

import logging
from collections import deque
from typing import Deque, Optional

from pubsub import pub

from ..models.note import Note

logger = logging.getLogger(__name__)

STATUS_TOPIC = "session.status"
NOTE_TOPIC = "session.note"


class StatusPublisher:
    """Publishes short user-visible status strings and note updates using pubsub.pub."""

    def __init__(self, status_topic: str = STATUS_TOPIC, note_topic: str = NOTE_TOPIC,
                 history_size: int = 50):
        """Initialize status publisher.

        Args:
            status_topic: Pub/sub topic for status messages
            note_topic: Pub/sub topic for note updates
            history_size: How many recent status messages to keep in memory
        """
        self.status_topic = status_topic
        self.note_topic = note_topic
        self.history: Deque[str] = deque(maxlen=history_size)
        self.state = "idle"
        logger.info(f"StatusPublisher initialized with topics: {status_topic}, {note_topic}")

    @property
    def current(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    def publish(self, message: str, state: Optional[str] = None) -> None:
        """Publish a status message, optionally along with a new controller state."""
        if state is not None:
            self.state = state
        self.history.append(message)
        logger.info(f"Status: {message}")
        pub.sendMessage(self.status_topic, message=message, state=self.state)

    def publish_note(self, note: Note) -> None:
        pub.sendMessage(self.note_topic, note=note)
