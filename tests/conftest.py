"""Pytest configuration and fixtures for voicenotes tests."""

import asyncio
import logging
from pathlib import Path
from unittest.mock import Mock, patch

import numpy as np
import pytest
from aiortc import RTCSessionDescription

from voicenotes.models.signaling import SignalingAnswer
from voicenotes.models.transcription import AudioChunk
from voicenotes.audio.recorder import pcm_to_wav, WAV_MIME_TYPE


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeDevice:
    """Stands in for AudioDevice: counts open/close and lets tests push PCM."""

    def __init__(self, sample_rate=16000, channels=1, open_error=None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.sample_width = 2
        self.listeners = []
        self.open = Mock(side_effect=open_error)
        self.close = Mock()

    def add_listener(self, listener):
        self.listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def feed(self, data: bytes):
        for listener in list(self.listeners):
            listener(data)


class FakeTranscriber:
    """Returns canned responses in order; exceptions in the list are raised."""

    def __init__(self, responses=(), delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def transcribe_audio(self, audio: bytes, mime_type: str) -> str:
        self.calls.append((audio, mime_type))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            response = self.responses.pop(0) if self.responses else ""
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            self.in_flight -= 1


class FakeTextGenerator:
    """Records polish prompts and answers with numbered HTML."""

    def __init__(self, responses=None):
        self.responses = list(responses) if responses is not None else None
        self.calls = []

    async def generate_text(self, prompt: str) -> str:
        self.calls.append(prompt)
        if self.responses is None:
            return f"<p>polished {len(self.calls)}</p>"
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, Exception):
            raise response
        return response


class FakePeerConnection:
    """Minimal RTCPeerConnection double with a controllable connection state."""

    def __init__(self):
        self.handlers = {}
        self.tracks = []
        self.connectionState = "new"
        self.localDescription = None
        self.remoteDescription = None
        self.close_calls = 0

    def on(self, event, f=None):
        self.handlers[event] = f
        return f

    def addTrack(self, track):
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0\r\no=- offer\r\n", type="offer")

    async def setLocalDescription(self, description):
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self.remoteDescription = description

    async def close(self):
        self.close_calls += 1
        self.connectionState = "closed"

    def set_state(self, state: str):
        self.connectionState = state
        self.handlers["connectionstatechange"]()


class ClosingPeerConnection(FakePeerConnection):
    """Rejects a remote description once closed, as aiortc does."""

    def __init__(self, delay=0.05):
        super().__init__()
        self.delay = delay

    async def setRemoteDescription(self, description):
        await asyncio.sleep(self.delay)
        if self.close_calls:
            raise ConnectionError("RTCPeerConnection is closed")
        await super().setRemoteDescription(description)


class FakeSignaling:
    def __init__(self, error=None, delay=0.0, on_exchange=None):
        self.error = error
        self.delay = delay
        self.on_exchange = on_exchange
        self.offers = []

    async def exchange(self, offer):
        self.offers.append(offer)
        if self.on_exchange is not None:
            self.on_exchange()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SignalingAnswer(sdp="v=0\r\no=- answer\r\n", type="answer")


class FakeEventStream:
    """Transcript stream double; tests call ``push`` to deliver fragments."""

    def __init__(self, url, on_text, on_error=None):
        self.url = url
        self.on_text = on_text
        self.on_error = on_error
        self.open_calls = 0
        self.close_calls = 0

    def open(self):
        self.open_calls += 1

    async def close(self):
        self.close_calls += 1

    def push(self, text: str):
        self.on_text(text)


@pytest.fixture
def fake_device():
    return FakeDevice()


@pytest.fixture
def fake_peer_connection():
    return FakePeerConnection()


@pytest.fixture
def event_streams():
    """Collects every FakeEventStream a pipeline creates."""
    streams = []

    def factory(url, on_text, on_error=None):
        stream = FakeEventStream(url, on_text, on_error)
        streams.append(stream)
        return stream

    factory.streams = streams
    return factory


@pytest.fixture
def audio_test_data():
    """Generate 16-bit PCM test audio."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000):
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t)  # 440 Hz sine wave
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * 32767).astype(np.int16).tobytes()

    return generate_audio


@pytest.fixture
def make_chunk(audio_test_data):
    """Build a WAV AudioChunk of the given duration."""
    def _make_chunk(sequence=1, duration_seconds=0.1, sample_rate=16000):
        pcm = audio_test_data("sine", duration_seconds, sample_rate)
        return AudioChunk(
            data=pcm_to_wav(pcm, sample_rate),
            mime_type=WAV_MIME_TYPE,
            sequence=sequence,
            duration_seconds=duration_seconds,
        )
    return _make_chunk


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.get_sample_size.return_value = 2
        mock_pyaudio_instance.get_default_input_device_info.return_value = {"index": 0}

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def config_file(tmp_path):
    """Write a complete configuration file and return its path."""
    path = Path(tmp_path) / "voicenotes.yaml"
    path.write_text(
        "gemini:\n"
        "  api_key_env: VOICENOTES_TEST_KEY\n"
        "  model: gemini-2.5-flash\n"
        "audio:\n"
        "  sample_rate: 16000\n"
        "  chunk_size: 512\n"
        "cloud:\n"
        "  chunk_duration_seconds: 15\n"
        "local:\n"
        "  base_url: http://localhost:7860\n"
        "storage:\n"
        "  export_directory: exports\n"
        "logging:\n"
        "  level: DEBUG\n"
        "  file_path: logs/voicenotes.log\n",
        encoding="utf-8",
    )
    return str(path)
