"""Note data model."""

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum


class Engine(Enum):
    """Transcription engine that produced (or polished) a note."""
    CLOUD = "cloud"
    LOCAL = "local"

    @property
    def label(self) -> str:
        return "Cloud" if self is Engine.CLOUD else "Local"


def _new_note_id() -> str:
    # Millisecond timestamp plus a random suffix keeps ids unique per process
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"note-{int(time.time() * 1000)}-{suffix}"


@dataclass
class Note:
    """The single current note produced by a recording session."""
    source_engine: Engine
    raw_transcript: str = ""
    polished_note: str = ""
    title: str = "Untitled Note"
    id: str = field(default_factory=_new_note_id)
    created_at: float = field(default_factory=time.time)

    @property
    def has_content(self) -> bool:
        return bool(self.raw_transcript.strip() or self.polished_note.strip())

    @property
    def is_unpolished_local(self) -> bool:
        """True while a local note's polished view still mirrors the raw text."""
        return (self.source_engine is Engine.LOCAL
                and self.polished_note == self.raw_transcript)
