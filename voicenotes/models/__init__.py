"""Data models for the voicenotes application."""

from .note import Engine, Note
from .transcription import FragmentKind, TranscriptFragment, AudioChunk
from .session import SessionState, RecordingSession
from .signaling import SignalingOffer, SignalingAnswer

__all__ = [
    "Engine",
    "Note",
    "FragmentKind",
    "TranscriptFragment",
    "AudioChunk",
    "SessionState",
    "RecordingSession",
    "SignalingOffer",
    "SignalingAnswer",
]
