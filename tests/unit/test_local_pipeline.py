"""Unit tests for the local streaming pipeline."""

import asyncio
from unittest.mock import Mock

import numpy as np
import pytest

from conftest import ClosingPeerConnection, FakeDevice, FakePeerConnection, FakeSignaling
from voicenotes.errors import StreamError, TransportError
from voicenotes.models.transcription import FragmentKind
from voicenotes.services.status import StatusPublisher
from voicenotes.transcription.local_pipeline import LocalStreamingPipeline, MicrophoneTrack


def build_pipeline(device, pc, event_streams, signaling=None, failure_callback=None):
    return LocalStreamingPipeline(
        device,
        asyncio.Queue(),
        StatusPublisher(),
        base_url="http://localhost:7860/",
        signaling=signaling or FakeSignaling(),
        peer_connection_factory=lambda: pc,
        event_stream_factory=event_streams,
        failure_callback=failure_callback,
        export_timeslice_seconds=0.1,
    )


@pytest.mark.unit
class TestLocalStreamingPipeline:

    @pytest.mark.asyncio
    async def test_handshake_and_stream_url(self, fake_device, fake_peer_connection, event_streams):
        signaling = FakeSignaling()
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams, signaling)
        await pipeline.start()

        offer = signaling.offers[0]
        assert offer.type == "offer"
        assert offer.session_id == pipeline.session_id
        assert offer.model_dump(by_alias=True)["sessionId"] == pipeline.session_id
        assert fake_peer_connection.remoteDescription.type == "answer"
        assert len(fake_peer_connection.tracks) == 1

        stream = event_streams.streams[0]
        assert stream.url == f"http://localhost:7860/transcript?webrtc_id={pipeline.session_id}"
        assert stream.open_calls == 1
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_stream_fragments_are_local_and_ordered(self, fake_device, fake_peer_connection,
                                                          event_streams):
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams)
        await pipeline.start()

        event_streams.streams[0].push("one")
        event_streams.streams[0].push("two")

        first = pipeline.fragments.get_nowait()
        second = pipeline.fragments.get_nowait()
        assert (first.text, first.kind, first.sequence) == ("one", FragmentKind.LOCAL, 1)
        assert (second.text, second.sequence) == ("two", 2)
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_stop_tears_down_each_handle_once(self, fake_device, fake_peer_connection,
                                                    event_streams):
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams)
        await pipeline.start()
        track = fake_peer_connection.tracks[0]

        await pipeline.stop()
        await pipeline.stop()

        assert event_streams.streams[0].close_calls == 1
        assert fake_peer_connection.close_calls == 1
        assert track.readyState == "ended"
        assert fake_device.listeners == []
        assert pipeline.session_id is None

    @pytest.mark.asyncio
    async def test_connection_failure_reports_transport_error(self, fake_device, fake_peer_connection,
                                                              event_streams):
        failure_callback = Mock()
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams,
                                  failure_callback=failure_callback)
        await pipeline.start()

        fake_peer_connection.set_state("failed")

        failure_callback.assert_called_once()
        assert isinstance(failure_callback.call_args[0][0], TransportError)
        assert pipeline.status.current == "Local WebRTC connection failed. Please check server and network."
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_state_changes_during_stop_are_ignored(self, fake_device, fake_peer_connection,
                                                         event_streams):
        failure_callback = Mock()
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams,
                                  failure_callback=failure_callback)
        await pipeline.start()
        handler = fake_peer_connection.handlers["connectionstatechange"]

        await pipeline.stop()
        handler()

        failure_callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_stream_error_does_not_tear_down(self, fake_device, fake_peer_connection, event_streams):
        failure_callback = Mock()
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams,
                                  failure_callback=failure_callback)
        await pipeline.start()

        event_streams.streams[0].on_error(StreamError("closed by server"))

        failure_callback.assert_not_called()
        assert fake_peer_connection.close_calls == 0
        assert pipeline.status.current == StreamError().status
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_connected_starts_export_recorder(self, fake_device, fake_peer_connection,
                                                    event_streams, audio_test_data):
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams)
        await pipeline.start()

        fake_peer_connection.set_state("connected")
        fake_device.feed(audio_test_data("sine", 0.15))
        await asyncio.sleep(0)
        assert len(pipeline.chunk_store) == 1

        await pipeline.stop()
        assert len(pipeline.chunk_store) == 2
        assert [c.sequence for c in pipeline.chunk_store] == [1, 2]

    @pytest.mark.asyncio
    async def test_rejected_offer_cleans_up_and_raises(self, fake_device, fake_peer_connection,
                                                       event_streams):
        signaling = FakeSignaling(error=TransportError("Local WebRTC server rejected offer: 500"))
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams, signaling)

        with pytest.raises(TransportError):
            await pipeline.start()

        assert fake_peer_connection.close_calls == 1
        assert event_streams.streams == []
        assert fake_device.listeners == []

    @pytest.mark.asyncio
    async def test_stop_during_signaling_opens_nothing(self, fake_device, fake_peer_connection,
                                                       event_streams):
        signaling = FakeSignaling(delay=0.05)
        pipeline = build_pipeline(fake_device, fake_peer_connection, event_streams, signaling)

        start = asyncio.create_task(pipeline.start())
        while not signaling.offers:
            await asyncio.sleep(0)
        await pipeline.stop()
        await start

        assert event_streams.streams == []
        assert fake_peer_connection.remoteDescription is None
        assert fake_peer_connection.close_calls == 1
        assert fake_device.listeners == []

    @pytest.mark.asyncio
    async def test_closed_peer_connection_error_after_stop_is_ignored(self, fake_device, event_streams):
        pc = ClosingPeerConnection()
        signaling = FakeSignaling()
        pipeline = build_pipeline(fake_device, pc, event_streams, signaling)

        start = asyncio.create_task(pipeline.start())
        while not signaling.offers:
            await asyncio.sleep(0)
        await pipeline.stop()
        await start

        assert event_streams.streams == []
        assert pc.close_calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_setup_failure_wrapped(self, fake_device, event_streams):
        pc = FakePeerConnection()

        async def broken_offer():
            raise RuntimeError("no codecs")
        pc.createOffer = broken_offer

        pipeline = build_pipeline(fake_device, pc, event_streams)
        with pytest.raises(TransportError, match="no codecs"):
            await pipeline.start()
        assert pc.close_calls == 1

    def test_engine_attributes(self):
        assert LocalStreamingPipeline.polishes_fragments is False
        assert LocalStreamingPipeline.interruptible is True


@pytest.mark.unit
class TestMicrophoneTrack:

    @pytest.mark.asyncio
    async def test_recv_builds_audio_frames(self, audio_test_data):
        device = FakeDevice()
        track = MicrophoneTrack(device, asyncio.get_running_loop())

        block = audio_test_data("sine", 0.02)
        device.feed(block)
        device.feed(block)
        await asyncio.sleep(0)

        first = await track.recv()
        second = await track.recv()

        assert first.sample_rate == 16000
        samples_per_block = len(block) // 2
        assert first.samples == samples_per_block
        assert (first.pts, second.pts) == (0, samples_per_block)
        np.testing.assert_array_equal(first.to_ndarray()[0], np.frombuffer(block, dtype=np.int16))

        track.stop()
        assert device.listeners == []
        assert track.readyState == "ended"
