"""Microphone device handle built on PyAudio."""

import pyaudio
import logging
import threading
from typing import Callable, List, Optional

from ..errors import DeviceError, DeviceBusyError, DeviceNotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

# PortAudio error codes
PA_INVALID_CHANNEL_COUNT = -9998
PA_INVALID_DEVICE = -9996
PA_BAD_IO_DEVICE_COMBINATION = -9993
PA_DEVICE_UNAVAILABLE = -9985

_NOT_FOUND_CODES = {PA_INVALID_DEVICE, PA_INVALID_CHANNEL_COUNT}
_BUSY_CODES = {PA_DEVICE_UNAVAILABLE, PA_BAD_IO_DEVICE_COMBINATION}


def classify_device_error(error: Exception) -> DeviceError:
    """Map a PyAudio/OS failure to a permission, not-found or busy error."""
    if isinstance(error, DeviceError):
        return error
    if isinstance(error, PermissionError):
        return PermissionDeniedError(str(error))

    # PyAudio raises IOError(message, code), which leaves the message in errno
    code = getattr(error, 'errno', None)
    if not isinstance(code, int) and len(getattr(error, 'args', ())) > 1:
        code = error.args[1]
    message = str(error)

    if code in _NOT_FOUND_CODES or "No Default Input Device" in message:
        return DeviceNotFoundError(message)
    if code in _BUSY_CODES:
        return DeviceBusyError(message)
    return DeviceBusyError(message or error.__class__.__name__)


class AudioDevice:
    """Acquired microphone that fans captured PCM out to listeners.

    PyAudio runs the stream callback on its own thread; listeners must be
    thread-safe and must not block.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        channels: int = 1,
        device_index: Optional[int] = None,
        format: int = pyaudio.paInt16,
    ):
        """Initialize the device handle.

        Args:
            sample_rate: Audio sample rate in Hz
            chunk_size: Frames per PortAudio buffer
            channels: Number of audio channels (1 for mono)
            device_index: PortAudio input device index, None for the default
            format: PortAudio sample format (16-bit signed int)
        """
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.device_index = device_index
        self.format = format
        self.sample_width = 2

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self.is_open = False
        self.total_chunks = 0

        self._listeners: List[Callable[[bytes], None]] = []
        self._lock = threading.Lock()

    def open(self) -> None:
        """Acquire the microphone and start capturing.

        Raises:
            PermissionDeniedError, DeviceNotFoundError, DeviceBusyError
        """
        if self.is_open:
            logger.warning("Audio device already open")
            return

        logger.info("Requesting microphone access")
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            if self.device_index is None:
                # Raises when the host has no input device at all
                self.pyaudio_instance.get_default_input_device_info()
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.chunk_size,
                stream_callback=self._on_audio,
            )
            self.sample_width = self.pyaudio_instance.get_sample_size(self.format)
            self.stream.start_stream()
        except Exception as e:
            logger.error(f"Failed to open audio device: {e}")
            self._terminate()
            raise classify_device_error(e) from e

        self.is_open = True
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.chunk_size} samples/chunk")

    def _on_audio(self, in_data, frame_count, time_info, status_flags):
        self.total_chunks += 1
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(in_data)
            except Exception as e:
                logger.error(f"Audio listener failed: {e}", exc_info=True)
        return (None, pyaudio.paContinue)

    def add_listener(self, listener: Callable[[bytes], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bytes], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        """Stop capture and release the microphone. Safe to call repeatedly."""
        if not self.is_open and self.pyaudio_instance is None:
            return

        logger.info(f"Releasing audio device. Total chunks: {self.total_chunks}")
        with self._lock:
            self._listeners.clear()
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            except Exception as e:
                logger.warning(f"Error closing audio stream: {e}")
            finally:
                self.stream = None
        self._terminate()
        self.is_open = False

    def _terminate(self) -> None:
        if self.pyaudio_instance is not None:
            try:
                self.pyaudio_instance.terminate()
            except Exception as e:
                logger.warning(f"Error terminating PyAudio: {e}")
            finally:
                self.pyaudio_instance = None
