"""Audio analysis handle: smoothed spectrum and peak level of the live input."""

import logging
import threading
from typing import Optional

import numpy as np
from scipy.fft import rfft
from scipy.signal import get_window

logger = logging.getLogger(__name__)


class AudioLevelMeter:
    """Analyser attached to an audio device while a session records.

    Mirrors a browser AnalyserNode: Blackman-windowed FFT, exponential
    smoothing across blocks and byte-scaled decibel output.
    """

    def __init__(self, device, fft_size: int = 256, smoothing: float = 0.75,
                 min_db: float = -100.0, max_db: float = -30.0):
        self.device = device
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db

        self.window = get_window("blackman", fft_size)
        self.peak_level = 0.0
        self._smoothed = np.zeros(fft_size // 2)
        self._lock = threading.Lock()
        self._attached = False

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def attach(self) -> None:
        if self._attached:
            return
        self.device.add_listener(self._on_audio)
        self._attached = True
        logger.debug(f"AudioLevelMeter attached (fft_size={self.fft_size})")

    def _on_audio(self, data: bytes) -> None:
        samples = np.frombuffer(data, dtype=np.int16).astype(np.float64) / 32768.0
        if samples.size == 0:
            return
        block = samples[-self.fft_size:]
        if block.size < self.fft_size:
            block = np.pad(block, (0, self.fft_size - block.size))

        spectrum = np.abs(rfft(block * self.window))[:self.frequency_bin_count] / self.fft_size
        with self._lock:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * spectrum
            self.peak_level = float(np.max(np.abs(samples)))

    def frequency_data(self) -> np.ndarray:
        """Current spectrum scaled to 0..255 between ``min_db`` and ``max_db``."""
        with self._lock:
            smoothed = self._smoothed.copy()
        db = 20.0 * np.log10(np.maximum(smoothed, 1e-12))
        scaled = (db - self.min_db) / (self.max_db - self.min_db) * 255.0
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def level_bars(self, count: int = 16) -> Optional[np.ndarray]:
        """Downsample the spectrum to ``count`` bars in 0.0..1.0."""
        data = self.frequency_data()[:self.frequency_bin_count // 2]
        if data.size == 0 or count <= 0:
            return None
        indices = (np.arange(count) * (data.size / count)).astype(int)
        return data[indices] / 255.0

    def close(self) -> None:
        """Detach from the device. Safe to call repeatedly."""
        if not self._attached:
            return
        try:
            self.device.remove_listener(self._on_audio)
        finally:
            self._attached = False
            self.peak_level = 0.0
        logger.debug("AudioLevelMeter released")
