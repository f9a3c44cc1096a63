"""Audio capture and analysis module."""

from .capture import AudioDevice, classify_device_error
from .level_meter import AudioLevelMeter
from .recorder import ChunkRecorder, pcm_to_wav, wav_to_pcm

__all__ = [
    'AudioDevice',
    'classify_device_error',
    'AudioLevelMeter',
    'ChunkRecorder',
    'pcm_to_wav',
    'wav_to_pcm',
]
