"""Local streaming pipeline: WebRTC audio out, server-sent transcript in."""

import asyncio
import logging
import uuid
from fractions import Fraction
from typing import Callable, List, Optional
from urllib.parse import urlencode

import av
import numpy as np
from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.mediastreams import MediaStreamError

from ..audio.recorder import ChunkRecorder
from ..errors import StreamError, TransportError, VoiceNotesError
from ..models.note import Engine
from ..models.signaling import SignalingOffer
from ..models.transcription import AudioChunk, FragmentKind
from .base import TranscriptionPipeline
from .event_stream import TranscriptEventStream
from .signaling import SignalingClient

logger = logging.getLogger(__name__)

FAILED_CONNECTION_STATES = ("failed", "disconnected", "closed")


class MicrophoneTrack(MediaStreamTrack):
    """Audio track that forwards the device's PCM blocks as ``av.AudioFrame``s."""

    kind = "audio"

    def __init__(self, device, loop: asyncio.AbstractEventLoop, max_pending: int = 50):
        super().__init__()
        self.device = device
        self._loop = loop
        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue(maxsize=max_pending)
        self._pts = 0
        self.layout = "mono" if device.channels == 1 else "stereo"
        device.add_listener(self._on_audio)

    def _on_audio(self, data: bytes) -> None:
        # Called on the audio thread
        self._loop.call_soon_threadsafe(self._enqueue, data)

    def _enqueue(self, data: bytes) -> None:
        if self._queue.full():
            # Keep latency bounded: drop the oldest block
            self._queue.get_nowait()
        self._queue.put_nowait(data)

    async def recv(self) -> av.AudioFrame:
        if self.readyState != "live":
            raise MediaStreamError

        data = await self._queue.get()
        samples = np.frombuffer(data, dtype=np.int16).reshape(1, -1)
        frame = av.AudioFrame.from_ndarray(samples, format="s16", layout=self.layout)
        frame.sample_rate = self.device.sample_rate
        frame.pts = self._pts
        frame.time_base = Fraction(1, self.device.sample_rate)
        self._pts += samples.shape[1] // self.device.channels
        return frame

    def stop(self) -> None:
        self.device.remove_listener(self._on_audio)
        super().stop()


class LocalStreamingPipeline(TranscriptionPipeline):
    """Streams microphone audio to a local inference server over WebRTC.

    Transcript fragments come back on a separate server-sent event stream
    keyed by the session id. Connection failures tear the session down via
    ``on_failure``; stream errors only close the stream.
    """

    engine = Engine.LOCAL
    polishes_fragments = False
    interruptible = True

    def __init__(
        self,
        device,
        fragments: asyncio.Queue,
        status,
        base_url: str = "http://localhost:7860",
        stun_server: Optional[str] = "stun:stun.l.google.com:19302",
        session_query_key: str = "webrtc_id",
        chunk_store: Optional[List[AudioChunk]] = None,
        export_timeslice_seconds: float = 1.0,
        signaling: Optional[SignalingClient] = None,
        peer_connection_factory: Optional[Callable[[], RTCPeerConnection]] = None,
        event_stream_factory: Optional[Callable[..., TranscriptEventStream]] = None,
        failure_callback: Optional[Callable[[VoiceNotesError], None]] = None,
    ):
        super().__init__(device, fragments, status, failure_callback)
        self.base_url = base_url.rstrip("/")
        self.stun_server = stun_server
        self.session_query_key = session_query_key
        self.chunk_store = chunk_store if chunk_store is not None else []
        self.export_timeslice_seconds = export_timeslice_seconds

        self.signaling = signaling or SignalingClient(self.base_url)
        self.peer_connection_factory = peer_connection_factory or self._default_peer_connection
        self.event_stream_factory = event_stream_factory or TranscriptEventStream

        self.session_id: Optional[str] = None
        self.peer_connection = None
        self.track: Optional[MicrophoneTrack] = None
        self.event_stream: Optional[TranscriptEventStream] = None
        self.export_recorder: Optional[ChunkRecorder] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping = False
        self._stopped = False

    def _default_peer_connection(self) -> RTCPeerConnection:
        ice_servers = [RTCIceServer(urls=self.stun_server)] if self.stun_server else []
        return RTCPeerConnection(RTCConfiguration(iceServers=ice_servers))

    @property
    def transcript_url(self) -> str:
        query = urlencode({self.session_query_key: self.session_id})
        return f"{self.base_url}/transcript?{query}"

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.session_id = uuid.uuid4().hex[:8]
        self.status.publish("Initializing Local WebRTC...")

        try:
            pc = self.peer_connection = self.peer_connection_factory()
            pc.on("connectionstatechange", self._on_connection_state_change)

            self.track = MicrophoneTrack(self.device, self._loop)
            pc.addTrack(self.track)

            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            if self._stopping:
                logger.info("Local WebRTC stopped during setup")
                return

            self.status.publish("Sending offer to Local WebRTC server...")
            answer = await self.signaling.exchange(SignalingOffer(
                sdp=pc.localDescription.sdp,
                type=pc.localDescription.type,
                session_id=self.session_id,
            ))
            if self._stopping:
                logger.info("Local WebRTC stopped during signaling")
                return
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer.sdp, type=answer.type))
            if self._stopping:
                logger.info("Local WebRTC stopped during setup")
                return
            self.status.publish("Remote description set. Establishing transcription stream...")

            self.event_stream = self.event_stream_factory(
                self.transcript_url, self._on_transcript_text, self._on_stream_error)
            self.event_stream.open()
        except TransportError:
            if self._stopping:
                logger.info("Ignoring signaling failure after stop")
                return
            await self.stop()
            raise
        except Exception as e:
            if self._stopping:
                # The peer connection was closed under an in-flight setup step
                logger.info(f"Local WebRTC setup interrupted by stop: {e}")
                return
            logger.error(f"Error starting Local WebRTC recording: {e}", exc_info=True)
            await self.stop()
            raise TransportError(f"Local WebRTC setup failed: {e}") from e

        logger.info(f"Local pipeline started (session {self.session_id})")

    def _on_connection_state_change(self) -> None:
        if self._stopping or self.peer_connection is None:
            return
        state = self.peer_connection.connectionState
        logger.info(f"WebRTC Connection State: {state}")

        if state == "connected":
            self.status.publish("Connected to Local WebRTC.")
            self._start_export_recorder()
        elif state in FAILED_CONNECTION_STATES:
            self.status.publish("Local WebRTC connection failed. Please check server and network.")
            self.on_failure(TransportError(f"Local WebRTC connection {state}"))
        else:
            self.status.publish(f"WebRTC: {state}")

    def _start_export_recorder(self) -> None:
        if self.export_recorder is not None:
            return
        try:
            self.export_recorder = ChunkRecorder(
                self.device, self.export_timeslice_seconds, self._on_export_chunk)
            self.export_recorder.start()
        except Exception as e:
            logger.warning(f"Could not start recorder for local audio export: {e}")
            self.export_recorder = None

    def _on_export_chunk(self, chunk: AudioChunk) -> None:
        # Called on the audio thread
        self._loop.call_soon_threadsafe(self.chunk_store.append, chunk)

    def _on_transcript_text(self, text: str) -> None:
        self.on_fragment(text, FragmentKind.LOCAL)

    def _on_stream_error(self, error: StreamError) -> None:
        # The server may end the stream when audio ends; only stop() tears down
        self.status.publish(error.status)

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stopping = True
        self.status.publish("Stopping local WebRTC recording...")

        if self.event_stream is not None:
            try:
                await self.event_stream.close()
            except Exception as e:
                logger.warning(f"Error closing transcript stream: {e}")
            finally:
                self.event_stream = None

        if self.track is not None:
            try:
                self.track.stop()
            except Exception as e:
                logger.warning(f"Error stopping audio track: {e}")
            finally:
                self.track = None

        if self.export_recorder is not None:
            try:
                final_chunk = self.export_recorder.stop()
                await asyncio.sleep(0)
                if final_chunk is not None:
                    self.chunk_store.append(final_chunk)
            except Exception as e:
                logger.warning(f"Error stopping export recorder: {e}")
            finally:
                self.export_recorder = None

        if self.peer_connection is not None:
            try:
                await self.peer_connection.close()
                logger.info("WebRTC PeerConnection closed.")
            except Exception as e:
                logger.warning(f"Error while closing PeerConnection: {e}")
            finally:
                self.peer_connection = None

        self.session_id = None
