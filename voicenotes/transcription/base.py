"""Abstract base class for transcription pipelines."""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..errors import VoiceNotesError
from ..models.note import Engine
from ..models.transcription import FragmentKind, TranscriptFragment

logger = logging.getLogger(__name__)


class TranscriptionPipeline(ABC):
    """Common capability of the cloud and local pipelines.

    A pipeline turns captured audio into ``TranscriptFragment``s pushed onto
    the session's fragment channel, and reports unrecoverable transport
    failures through ``on_failure``.
    """

    engine: Engine
    # Whether each fragment triggers a polish and the session ends with one
    polishes_fragments: bool = False
    # Whether an engine switch may stop this pipeline mid-session
    interruptible: bool = True

    def __init__(
        self,
        device,
        fragments: asyncio.Queue,
        status,
        failure_callback: Optional[Callable[[VoiceNotesError], None]] = None,
    ):
        self.device = device
        self.fragments = fragments
        self.status = status
        self.failure_callback = failure_callback
        self._sequence = itertools.count(1)

    @abstractmethod
    async def start(self) -> None:
        """Begin capture and transcription.

        Raises:
            VoiceNotesError: If the pipeline cannot be brought up
        """

    @abstractmethod
    async def stop(self) -> None:
        """Cease capture, drain in-flight work and release transport handles.

        Must be idempotent and must not raise.
        """

    async def drain(self) -> None:
        """Wait until in-flight transcription work has been handed off."""

    def on_fragment(self, text: str, kind: FragmentKind) -> TranscriptFragment:
        """Push a fragment onto the session channel in arrival order."""
        fragment = TranscriptFragment(text=text, kind=kind, sequence=next(self._sequence))
        self.fragments.put_nowait(fragment)
        return fragment

    def on_failure(self, error: VoiceNotesError) -> None:
        logger.error(f"{self.__class__.__name__} failed: {error}")
        if self.failure_callback is not None:
            self.failure_callback(error)
