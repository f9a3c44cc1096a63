"""Cloud chunked pipeline: one transcription request per recorded chunk."""

import asyncio
import logging
from typing import Callable, List, Optional, Protocol

from ..audio.recorder import ChunkRecorder
from ..errors import VoiceNotesError
from ..models.note import Engine
from ..models.transcription import AudioChunk, FragmentKind
from .base import TranscriptionPipeline

logger = logging.getLogger(__name__)


class AudioTranscriber(Protocol):
    async def transcribe_audio(self, audio: bytes, mime_type: str) -> str:
        ...


class CloudChunkedPipeline(TranscriptionPipeline):
    """Records fixed-duration chunks and transcribes them one at a time.

    Chunks land on a queue consumed by a single worker task, so exactly one
    transcription request is in flight and results are emitted in the order
    the chunks were recorded. Stopping flushes the trailing partial chunk and
    joins the worker.
    """

    engine = Engine.CLOUD
    polishes_fragments = True
    interruptible = False

    def __init__(
        self,
        device,
        fragments: asyncio.Queue,
        status,
        transcriber: AudioTranscriber,
        chunk_store: Optional[List[AudioChunk]] = None,
        chunk_duration_seconds: float = 15.0,
        failure_callback: Optional[Callable[[VoiceNotesError], None]] = None,
    ):
        super().__init__(device, fragments, status, failure_callback)
        self.transcriber = transcriber
        self.chunk_store = chunk_store if chunk_store is not None else []
        self.chunk_duration_seconds = chunk_duration_seconds

        self.recorder: Optional[ChunkRecorder] = None
        self.chunk_queue: "asyncio.Queue[Optional[AudioChunk]]" = asyncio.Queue()
        self.worker_task: Optional[asyncio.Task] = None
        self.in_flight: Optional[AudioChunk] = None
        self.chunks_processed = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._accepting = False
        self._stopped = False

    @property
    def is_busy(self) -> bool:
        return self.in_flight is not None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.worker_task = asyncio.create_task(self._worker_loop(), name="cloud-chunk-worker")
        self._accepting = True

        self.recorder = ChunkRecorder(self.device, self.chunk_duration_seconds, self._on_recorded_chunk)
        self.recorder.start()
        logger.info(f"Cloud pipeline started: {self.chunk_duration_seconds}s chunks")

    def _on_recorded_chunk(self, chunk: AudioChunk) -> None:
        # Called on the audio thread
        self._loop.call_soon_threadsafe(self.deliver_chunk, chunk)

    def deliver_chunk(self, chunk: AudioChunk) -> None:
        """Queue a recorded chunk for transcription. Must run on the event loop."""
        if not self._accepting:
            logger.warning(f"Dropping chunk #{chunk.sequence}: pipeline is stopping")
            return
        self.chunk_store.append(chunk)
        self.chunk_queue.put_nowait(chunk)
        logger.debug(f"Queued chunk #{chunk.sequence} ({len(chunk.data)} bytes, "
                     f"{self.chunk_queue.qsize()} pending)")

    async def _worker_loop(self) -> None:
        while True:
            chunk = await self.chunk_queue.get()
            try:
                if chunk is None:
                    logger.debug("Cloud chunk worker received sentinel, exiting")
                    break
                await self._transcribe_chunk(chunk)
            except Exception as e:
                logger.error(f"Unhandled exception transcribing chunk: {e}", exc_info=True)
            finally:
                self.in_flight = None
                self.chunk_queue.task_done()

    async def _transcribe_chunk(self, chunk: AudioChunk) -> None:
        self.in_flight = chunk
        self.status.publish("Transcribing chunk (Cloud)...")
        logger.info(f"Transcribing chunk #{chunk.sequence} ({chunk.duration_seconds:.1f}s)")

        try:
            text = await self.transcriber.transcribe_audio(chunk.data, chunk.mime_type)
        except Exception as e:
            message = e.detail if isinstance(e, VoiceNotesError) else str(e)
            logger.error(f"Error during cloud transcription of chunk #{chunk.sequence}: {message}")
            self.status.publish(f"Cloud transcription error: {message[:100]}")
            self.on_fragment(message, FragmentKind.ERROR)
            return
        finally:
            self.chunks_processed += 1

        if not text or not text.strip():
            self.status.publish("Cloud transcription chunk empty.")
            return

        logger.info(f"CLOUD chunk #{chunk.sequence}: '{text.strip()[:80]}'")
        self.on_fragment(text, FragmentKind.CLOUD)

    async def drain(self) -> None:
        await self.chunk_queue.join()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping cloud pipeline...")

        final_chunk = None
        if self.recorder is not None:
            try:
                final_chunk = self.recorder.stop()
            except Exception as e:
                logger.warning(f"Error stopping chunk recorder: {e}")

        # Let chunks already handed over by the audio thread land first
        await asyncio.sleep(0)
        if final_chunk is not None:
            self.deliver_chunk(final_chunk)
        self._accepting = False

        if self.worker_task is not None:
            if self.chunk_queue.qsize() or self.is_busy:
                logger.info(f"Waiting for {self.chunk_queue.qsize()} queued chunk(s) "
                            f"and in-flight request to finish")
            self.chunk_queue.put_nowait(None)
            try:
                await self.worker_task
            except Exception as e:
                logger.warning(f"Cloud chunk worker ended with error: {e}")
        logger.info(f"Cloud pipeline stopped after {self.chunks_processed} chunk(s)")
