"""Polish invoker: turns the raw transcript into a structured rich-text note."""

import re
import logging
from typing import Optional, Protocol

import markdown

from ..errors import ServiceError
from ..models.note import Engine, Note

logger = logging.getLogger(__name__)

POLISH_PROMPT = """Based on the following raw audio transcription, please generate a polished and well-structured note.
Correct grammar and spelling, remove filler words (like "um", "uh"), improve sentence flow, and organize the content logically.
Use headings, bullet points, or numbered lists where appropriate to enhance readability. The output should be in clean HTML format.
Ensure the key information and intent from the raw transcription are preserved.

Raw Transcription:
---
{transcript}
---
Polished HTML Note:"""

EMPTY_RESPONSE_MARKER = "Cloud polishing failed: Empty response."

MARKDOWN_SNIFF_LENGTH = 500
_MARKDOWN_PATTERN = re.compile(
    r"^(#+\s|\*\s|-\s|>\s|`{1,3}|\[.*?\]\(.*?\)|!\[.*?\]\(.*?\))", re.MULTILINE
)


class TextGenerator(Protocol):
    """Anything that can answer a single free-text prompt."""

    async def generate_text(self, prompt: str) -> str:
        ...


def looks_like_markdown(content: str) -> bool:
    return bool(_MARKDOWN_PATTERN.search(content[:MARKDOWN_SNIFF_LENGTH]))


def to_rich_text(content: str) -> str:
    """Convert Markdown-looking responses to HTML; pass HTML through untouched."""
    if looks_like_markdown(content):
        logger.warning("Polish response looks like Markdown despite HTML prompt; converting")
        return markdown.markdown(content, extensions=["fenced_code", "sane_lists"])
    return content


class PolishInvoker:
    """Sends the accumulated raw transcript to the text service for polishing."""

    def __init__(self, generator: TextGenerator, status=None):
        """Initialize polish invoker.

        Args:
            generator: Text service client (see ``GeminiClient``)
            status: Optional ``StatusPublisher`` for user-visible progress
        """
        self.generator = generator
        self.status = status
        self.invocations = 0

    def _publish(self, message: str) -> None:
        if self.status is not None:
            self.status.publish(message)

    async def polish(self, note: Optional[Note]) -> bool:
        """Polish ``note`` in place.

        Returns:
            False when there was nothing to polish, True after any request
        """
        if note is None or not note.raw_transcript.strip():
            logger.debug("Skipping polish: raw transcript is empty")
            return False

        self.invocations += 1
        self._publish("Polishing notes (Cloud)...")
        prompt = POLISH_PROMPT.format(transcript=note.raw_transcript)

        try:
            content = await self.generator.generate_text(prompt)
            if content:
                note.polished_note = to_rich_text(content)
            else:
                logger.warning("Polish returned an empty response")
                note.polished_note = EMPTY_RESPONSE_MARKER
        except ServiceError as e:
            logger.error(f"Error polishing notes: {e}")
            note.polished_note = f"Cloud polishing error: {e.detail}"
        except Exception as e:
            logger.error(f"Unexpected error polishing notes: {e}", exc_info=True)
            note.polished_note = f"Cloud polishing error: {e}"

        # Only the cloud service polishes, whatever captured the audio
        note.source_engine = Engine.CLOUD
        self._publish("Cloud notes polished.")
        return True
