"""Session controller: the recording state machine that owns the current note."""

import asyncio
import functools
import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..audio.capture import AudioDevice
from ..audio.level_meter import AudioLevelMeter
from ..errors import (
    DeviceError,
    EngineSwitchRefusedError,
    ServiceError,
    SessionAlreadyActiveError,
    VoiceNotesError,
)
from ..models.note import Engine, Note
from ..models.session import RecordingSession, SessionState
from ..models.transcription import AudioChunk, FragmentKind, TranscriptFragment
from ..transcription.assembler import TranscriptAssembler
from ..transcription.base import TranscriptionPipeline
from ..transcription.cloud_pipeline import CloudChunkedPipeline
from ..transcription.local_pipeline import LocalStreamingPipeline
from ..transcription.signaling import SignalingClient
from .status import StatusPublisher

logger = logging.getLogger(__name__)

PipelineFactory = Callable[..., TranscriptionPipeline]

LIVE_STATES = (SessionState.REQUESTING, SessionState.ACTIVE,
               SessionState.STOPPING, SessionState.FINALIZING, SessionState.ERROR)


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    if mime_type:
        return mime_type
    if path.suffix.lower() == ".webm":
        return "audio/webm"
    return "application/octet-stream"


class SessionController:
    """Drives ``Idle → Requesting → Active → Stopping → Finalizing → Idle``.

    Holds at most one ``RecordingSession``. Whichever pipeline is live pushes
    fragments onto the session's channel; a single consumer task folds them
    into the note, so transcript mutation is strictly ordered. Any failure
    passes through ``Error``, which releases every handle and returns to
    ``Idle``.
    """

    def __init__(
        self,
        transcriber,
        polisher,
        status: Optional[StatusPublisher] = None,
        device_factory: Optional[Callable[[], AudioDevice]] = None,
        meter_factory: Optional[Callable[[AudioDevice], AudioLevelMeter]] = None,
        pipeline_factories: Optional[Dict[Engine, PipelineFactory]] = None,
        engine: Engine = Engine.CLOUD,
    ):
        """Initialize session controller.

        Args:
            transcriber: Audio transcription client, used for file uploads
            polisher: ``PolishInvoker`` shared by all engines
            status: Publisher for user-visible status and note updates
            device_factory: Builds an unopened microphone handle
            meter_factory: Builds the audio-analysis handle for a device
            pipeline_factories: Engine to pipeline constructor mapping
            engine: Initially selected engine
        """
        self.transcriber = transcriber
        self.polisher = polisher
        self.status = status or StatusPublisher()
        self.device_factory = device_factory or AudioDevice
        self.meter_factory = meter_factory or AudioLevelMeter
        self.pipeline_factories = pipeline_factories or {
            Engine.CLOUD: functools.partial(CloudChunkedPipeline, transcriber=transcriber),
            Engine.LOCAL: LocalStreamingPipeline,
        }

        self.engine = engine
        self.state = SessionState.IDLE
        self.session: Optional[RecordingSession] = None
        self.note = Note(source_engine=engine)
        self.assembler = TranscriptAssembler()
        self._audio_chunks: List[AudioChunk] = []
        self._teardown: Optional[asyncio.Task] = None
        self._processing_file = False

        logger.info(f"SessionController initialized with engine: {engine.value}")

    @classmethod
    def from_config(cls, config, transcriber, polisher, status: Optional[StatusPublisher] = None):
        """Build a controller whose device and pipelines follow ``config``."""
        device_factory = functools.partial(
            AudioDevice,
            sample_rate=config.get('audio.sample_rate', 16000),
            chunk_size=config.get('audio.chunk_size', 1024),
            channels=config.get('audio.channels', 1),
            device_index=config.get('audio.device_index'),
        )
        local_base_url = config.get('local.base_url', 'http://localhost:7860')
        pipeline_factories = {
            Engine.CLOUD: functools.partial(
                CloudChunkedPipeline,
                transcriber=transcriber,
                chunk_duration_seconds=config.get('cloud.chunk_duration_seconds', 15),
            ),
            Engine.LOCAL: functools.partial(
                LocalStreamingPipeline,
                base_url=local_base_url,
                stun_server=config.get('local.stun_server', 'stun:stun.l.google.com:19302'),
                session_query_key=config.get('local.session_query_key', 'webrtc_id'),
                export_timeslice_seconds=config.get('local.export_timeslice_seconds', 1),
                signaling=SignalingClient(local_base_url, config.get('local.timeout_seconds', 10)),
            ),
        }
        return cls(transcriber, polisher, status=status, device_factory=device_factory,
                   pipeline_factories=pipeline_factories)

    # Read-only views

    @property
    def audio_chunks(self) -> List[AudioChunk]:
        return list(self._audio_chunks)

    @property
    def elapsed_seconds(self) -> float:
        return self.session.elapsed_seconds if self.session is not None else 0.0

    @property
    def is_live(self) -> bool:
        return self.session is not None or self.state in LIVE_STATES or self._processing_file

    # State handling

    def _set_state(self, state: SessionState, message: str) -> None:
        if state is not self.state:
            logger.info(f"Session state: {self.state.value} -> {state.value}")
        self.state = state
        self.status.publish(message, state=state.value)

    def _new_note(self, engine: Engine, title: str) -> None:
        self.note = Note(source_engine=engine, title=title)
        self.assembler.reset()
        self._audio_chunks = []
        self.status.publish_note(self.note)

    # Operations

    async def select_engine(self, engine: Union[Engine, str]) -> None:
        """Select the engine for the next session.

        An interruptible live pipeline is stopped first; a cloud session
        cannot be interrupted.

        Raises:
            EngineSwitchRefusedError: While a cloud session is live
        """
        engine = Engine(engine)
        if engine is self.engine:
            return

        if self.session is not None:
            pipeline = self.session.pipeline
            if pipeline is None or not pipeline.interruptible:
                error = EngineSwitchRefusedError()
                self.status.publish(error.status)
                raise error
            logger.info(f"Stopping {self.session.engine.value} session before switching to {engine.value}")
            await self.stop()

        self.engine = engine
        self.status.publish(f"Engine: {engine.label}")

    async def start(self, engine: Optional[Union[Engine, str]] = None) -> bool:
        """Acquire the microphone and bring up the selected pipeline.

        Returns:
            True once Active, False when ``stop()`` ended the session first

        Raises:
            SessionAlreadyActiveError: Unless idle
            DeviceError: Classified acquisition failure, after returning to Idle
            TransportError: Local transport failure, after returning to Idle
        """
        if self.is_live:
            raise SessionAlreadyActiveError()
        if engine is not None:
            self.engine = Engine(engine)
        engine = self.engine

        timestamp = datetime.now().strftime("%x %X")
        self._new_note(engine, title=f"Recording ({engine.label}) {timestamp}")
        self._set_state(SessionState.REQUESTING, "Requesting microphone access...")

        device = self.device_factory()
        try:
            device.open()
        except DeviceError as e:
            logger.error(f"Error accessing microphone: {e.detail}")
            self._set_state(SessionState.ERROR, e.status)
            try:
                device.close()
            except Exception as close_error:
                logger.warning(f"Error releasing audio device: {close_error}")
            self._set_state(SessionState.IDLE, e.status)
            raise

        session = self.session = RecordingSession(engine=engine, device=device)
        try:
            session.meter = self.meter_factory(device)
            session.meter.attach()

            session.pipeline = self.pipeline_factories[engine](
                device,
                session.fragments,
                self.status,
                chunk_store=self._audio_chunks,
                failure_callback=self._on_pipeline_failure,
            )
            session.consumer_task = asyncio.create_task(
                self._consume_fragments(session), name="fragment-consumer")
            await session.pipeline.start()
        except Exception as e:
            error = e if isinstance(e, VoiceNotesError) else VoiceNotesError(str(e))
            logger.error(f"Failed to start {engine.value} session: {error.detail}")
            await self._fail(error)
            raise

        if self.session is not session or self._teardown is not None:
            if self._teardown is not None:
                await self._teardown
            if session.error is not None:
                raise session.error
            logger.info(f"{engine.label} session stopped before it became active")
            return False

        self._set_state(SessionState.ACTIVE, f"Recording ({engine.label})...")
        return True

    async def stop(self) -> None:
        """Stop the active session. Concurrent and repeated calls share one teardown."""
        task = self._teardown
        if task is None:
            if self.session is None:
                logger.debug("stop() called with no active session")
                return
            task = self._teardown = asyncio.create_task(
                self._finish_session(self.session, None), name="session-teardown")
        await task

    async def _fail(self, error: VoiceNotesError) -> None:
        task = self._teardown
        if task is None:
            if self.session is None:
                logger.debug(f"Session already torn down, not failing it again: {error.detail}")
                return
            task = self._teardown = asyncio.create_task(
                self._finish_session(self.session, error), name="session-teardown")
        await task

    def _on_pipeline_failure(self, error: VoiceNotesError) -> None:
        if self.session is None or self._teardown is not None:
            return
        logger.error(f"Pipeline failure, tearing down session: {error.detail}")
        self._teardown = asyncio.create_task(
            self._finish_session(self.session, error), name="session-teardown")

    async def _finish_session(self, session: RecordingSession, error: Optional[VoiceNotesError]) -> None:
        session.error = error
        pipeline = session.pipeline
        if error is None:
            self._set_state(SessionState.STOPPING, f"Stopping {session.engine.label} recording...")
        else:
            self._set_state(SessionState.ERROR, error.status)

        try:
            if pipeline is not None:
                try:
                    await pipeline.stop()
                except Exception as e:
                    logger.warning(f"Error stopping pipeline: {e}")

            # Fold everything the pipeline already delivered
            if session.consumer_task is not None:
                session.fragments.put_nowait(None)
                try:
                    await session.consumer_task
                except Exception as e:
                    logger.warning(f"Fragment consumer ended with error: {e}")

            session.release_resources()

            if error is None:
                self._set_state(SessionState.FINALIZING, "Finalizing notes...")
                if pipeline is not None and pipeline.polishes_fragments and self.note.raw_transcript.strip():
                    await self.polisher.polish(self.note)
                self.status.publish_note(self.note)
        finally:
            session.release_resources()
            self.session = None
            self._teardown = None
            if error is None:
                self._set_state(SessionState.IDLE, f"{session.engine.label} recording finished.")
            else:
                self._set_state(SessionState.IDLE, error.status)
            logger.info(f"Session ended after {session.elapsed_seconds:.1f}s, "
                        f"{len(self.note.raw_transcript)} transcript chars")

    async def _consume_fragments(self, session: RecordingSession) -> None:
        while True:
            fragment = await session.fragments.get()
            try:
                if fragment is None:
                    break
                await self._apply_fragment(fragment)
            except Exception as e:
                logger.error(f"Error applying fragment: {e}", exc_info=True)
            finally:
                session.fragments.task_done()

    async def _apply_fragment(self, fragment: TranscriptFragment) -> None:
        self.note.raw_transcript = self.assembler.append(fragment)

        if fragment.kind is FragmentKind.LOCAL:
            self.note.polished_note = self.note.raw_transcript
        elif fragment.kind is FragmentKind.CLOUD:
            await self.polisher.polish(self.note)

        self.status.publish_note(self.note)

    async def drain(self) -> None:
        """Wait until queued chunk work and queued fragments are fully applied."""
        session = self.session
        if session is None:
            return
        if session.pipeline is not None:
            await session.pipeline.drain()
        await session.fragments.join()

    def clear(self) -> bool:
        if self.is_live:
            self.status.publish("Please stop recording before clearing or uploading.")
            return False
        self._new_note(self.engine, title="Untitled Note")
        self.status.publish("Notes cleared.")
        return True

    async def polish(self) -> bool:
        """Polish a finished local note with the cloud service."""
        if self.is_live:
            self.status.publish("Please stop recording before polishing.")
            return False
        if self.note.source_engine is not Engine.LOCAL or not self.note.raw_transcript.strip():
            self.status.publish("No local transcript available to polish.")
            return False

        await self.polisher.polish(self.note)
        self.status.publish_note(self.note)
        return True

    async def transcribe_file(self, path: Union[str, Path]) -> bool:
        """Transcribe a whole audio file with the cloud engine and polish it.

        Returns:
            True when the file produced a transcript
        """
        if self.is_live:
            self.status.publish("Please stop recording before clearing or uploading.")
            return False

        path = Path(path)
        self.engine = Engine.CLOUD
        self._new_note(Engine.CLOUD, title=path.stem)
        self._processing_file = True
        self.status.publish(f"Processing file: {path.name} (Cloud)...")

        try:
            try:
                audio = path.read_bytes()
                text = await self.transcriber.transcribe_audio(audio, guess_mime_type(path))
            except (OSError, ServiceError) as e:
                logger.error(f"Error processing uploaded file {path}: {e}")
                self.status.publish("Error processing file. Please try again.")
                return False

            if not text or not text.strip():
                self.status.publish("Cloud transcription of file returned empty.")
                return False

            fragment = TranscriptFragment(text=text, kind=FragmentKind.CLOUD, sequence=1)
            self.note.raw_transcript = self.assembler.replace(fragment)
            self.status.publish_note(self.note)

            await self.polisher.polish(self.note)
            self.status.publish_note(self.note)
        finally:
            self._processing_file = False

        self.status.publish("File processed.")
        return True
