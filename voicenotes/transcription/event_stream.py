"""Server-sent transcript event stream from the local inference server."""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Optional

import aiohttp

from ..errors import StreamError

logger = logging.getLogger(__name__)

TRANSCRIPT_EVENT = "output"


@dataclass
class ServerEvent:
    event: str
    data: str


async def iter_server_events(lines: AsyncIterable[bytes]) -> AsyncIterator[ServerEvent]:
    """Parse an ``text/event-stream`` body into events.

    Follows the EventSource framing: ``event:``/``data:`` fields accumulate
    until a blank line dispatches them; ``:`` lines are comments.
    """
    event_type = "message"
    data_lines = []

    async for raw in lines:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line:
            if data_lines:
                yield ServerEvent(event=event_type, data="\n".join(data_lines))
            event_type = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_type = value or "message"
        elif field == "data":
            data_lines.append(value)

    if data_lines:
        yield ServerEvent(event=event_type, data="\n".join(data_lines))


class TranscriptEventStream:
    """Reads transcript fragments pushed by the server for one session.

    ``on_text`` receives each non-empty ``output`` event. ``on_error`` is
    told when the stream fails or the server ends it; the stream is closed
    either way and never reopened.
    """

    def __init__(
        self,
        url: str,
        on_text: Callable[[str], None],
        on_error: Optional[Callable[[StreamError], None]] = None,
        event_name: str = TRANSCRIPT_EVENT,
    ):
        self.url = url
        self.on_text = on_text
        self.on_error = on_error
        self.event_name = event_name
        self.task: Optional[asyncio.Task] = None
        self.closed = False
        self.events_received = 0

    def open(self) -> None:
        logger.info(f"Connecting to transcript stream: {self.url}")
        self.task = asyncio.create_task(self._run(), name="transcript-event-stream")

    async def _run(self) -> None:
        timeout = aiohttp.ClientTimeout(total=None, sock_read=None)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url, headers={"Accept": "text/event-stream"}) as response:
                    if response.status != 200:
                        raise StreamError(f"Transcript stream returned HTTP {response.status}")
                    logger.info("Transcription EventSource connection opened.")
                    async for event in iter_server_events(response.content):
                        if event.event == self.event_name and event.data:
                            self.events_received += 1
                            self.on_text(event.data)
            raise StreamError("Transcript stream closed by server")
        except asyncio.CancelledError:
            logger.debug("Transcript stream task cancelled")
            raise
        except StreamError as e:
            self._fail(e)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._fail(StreamError(f"Transcript stream error: {e}"))

    def _fail(self, error: StreamError) -> None:
        logger.warning(f"Transcript stream ended: {error.detail}")
        self.closed = True
        if self.on_error is not None:
            self.on_error(error)

    async def close(self) -> None:
        """Stop reading. Safe to call repeatedly."""
        self.closed = True
        if self.task is None:
            return
        task, self.task = self.task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"Transcript stream closed after {self.events_received} event(s)")
