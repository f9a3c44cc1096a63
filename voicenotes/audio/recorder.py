"""Timesliced chunk recorder that turns live PCM into WAV audio chunks."""

import io
import time
import wave
import logging
import threading
from typing import Callable, Optional, Tuple

from ..models.transcription import AudioChunk

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


def pcm_to_wav(pcm: bytes, sample_rate: int, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw PCM bytes in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buffer.getvalue()


def wav_to_pcm(data: bytes) -> Tuple[bytes, int, int, int]:
    """Unwrap a WAV container into (pcm, sample_rate, channels, sample_width)."""
    with wave.open(io.BytesIO(data), 'rb') as wf:
        return (wf.readframes(wf.getnframes()), wf.getframerate(),
                wf.getnchannels(), wf.getsampwidth())


class ChunkRecorder:
    """Cuts the device's PCM stream into fixed-duration WAV chunks.

    ``on_chunk`` is invoked on the audio thread whenever a full timeslice has
    been captured. ``stop`` returns the trailing partial chunk instead of
    emitting it, so the caller can order it after anything already in flight.
    """

    def __init__(
        self,
        device,
        timeslice_seconds: float,
        on_chunk: Callable[[AudioChunk], None],
    ):
        self.device = device
        self.timeslice_seconds = timeslice_seconds
        self.on_chunk = on_chunk

        self.bytes_per_second = device.sample_rate * device.channels * device.sample_width
        self.slice_bytes = max(1, int(self.bytes_per_second * timeslice_seconds))

        self.buffer = bytearray()
        self.lock = threading.Lock()
        self.sequence = 0
        self.is_recording = False

        logger.debug(f"ChunkRecorder initialized: {timeslice_seconds}s slices, "
                     f"{self.slice_bytes} bytes per slice")

    def start(self) -> None:
        if self.is_recording:
            logger.warning("ChunkRecorder already recording")
            return
        self.buffer.clear()
        self.device.add_listener(self._on_audio)
        self.is_recording = True

    def _on_audio(self, data: bytes) -> None:
        chunks = []
        with self.lock:
            self.buffer.extend(data)
            while len(self.buffer) >= self.slice_bytes:
                pcm = bytes(self.buffer[:self.slice_bytes])
                del self.buffer[:self.slice_bytes]
                chunks.append(self._make_chunk(pcm))

        # Emit outside the lock
        for chunk in chunks:
            self.on_chunk(chunk)

    def _make_chunk(self, pcm: bytes) -> AudioChunk:
        self.sequence += 1
        return AudioChunk(
            data=pcm_to_wav(pcm, self.device.sample_rate, self.device.channels, self.device.sample_width),
            mime_type=WAV_MIME_TYPE,
            sequence=self.sequence,
            duration_seconds=len(pcm) / self.bytes_per_second,
            timestamp=time.time(),
        )

    def stop(self) -> Optional[AudioChunk]:
        """Stop recording and return the trailing partial chunk, if any."""
        if not self.is_recording:
            return None
        self.device.remove_listener(self._on_audio)
        self.is_recording = False

        with self.lock:
            if not self.buffer:
                return None
            pcm = bytes(self.buffer)
            self.buffer.clear()
            final_chunk = self._make_chunk(pcm)
        logger.debug(f"ChunkRecorder flushed final chunk #{final_chunk.sequence} "
                     f"({final_chunk.duration_seconds:.2f}s)")
        return final_chunk
