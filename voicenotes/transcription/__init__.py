"""Transcription module for voicenotes."""

from .assembler import TranscriptAssembler, assemble, normalize_cloud_text
from .base import TranscriptionPipeline
from .cloud_pipeline import CloudChunkedPipeline
from .event_stream import TranscriptEventStream, iter_server_events
from .gemini_client import GeminiClient
from .local_pipeline import LocalStreamingPipeline, MicrophoneTrack
from .polisher import PolishInvoker
from .signaling import SignalingClient

__all__ = [
    "TranscriptAssembler",
    "assemble",
    "normalize_cloud_text",
    "TranscriptionPipeline",
    "CloudChunkedPipeline",
    "TranscriptEventStream",
    "iter_server_events",
    "GeminiClient",
    "LocalStreamingPipeline",
    "MicrophoneTrack",
    "PolishInvoker",
    "SignalingClient",
]
