"""Transcription-related data models."""

import time
from dataclasses import dataclass, field
from enum import Enum


class FragmentKind(Enum):
    """How a fragment must be formatted before it joins the transcript."""
    CLOUD = "cloud"
    LOCAL = "local"
    ERROR = "error"


@dataclass
class TranscriptFragment:
    """A unit of newly transcribed text, in arrival order."""
    text: str
    kind: FragmentKind
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass
class AudioChunk:
    """A bounded-duration WAV segment captured during a session."""
    data: bytes
    mime_type: str
    sequence: int
    duration_seconds: float
    timestamp: float = field(default_factory=time.time)
