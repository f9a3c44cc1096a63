"""Recording session lifecycle models."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .note import Engine

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """States of the session controller."""
    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"
    STOPPING = "stopping"
    FINALIZING = "finalizing"
    ERROR = "error"


@dataclass
class RecordingSession:
    """One recording attempt, from device acquisition through finalization.

    Built by ``SessionController.start`` and dropped on stop or error
    teardown. Owns the device handle, the audio-analysis handle, the active
    pipeline and the fragment channel feeding the transcript.
    """
    engine: Engine
    device: Any
    meter: Optional[Any] = None
    pipeline: Optional[Any] = None
    fragments: "asyncio.Queue" = field(default_factory=asyncio.Queue)
    consumer_task: Optional["asyncio.Task"] = None
    started_at: float = field(default_factory=time.time)
    released: bool = False
    error: Optional[Any] = None

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.started_at

    def release_resources(self) -> None:
        """Release the device and analysis handles exactly once."""
        if self.released:
            logger.debug("Session resources already released")
            return
        self.released = True

        try:
            self.device.close()
        except Exception as e:
            logger.warning(f"Error releasing audio device: {e}")

        if self.meter is not None:
            try:
                self.meter.close()
            except Exception as e:
                logger.warning(f"Error releasing audio analysis handle: {e}")
