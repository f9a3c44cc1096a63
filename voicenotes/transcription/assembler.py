"""Cumulative transcript assembly shared by both pipelines.

Fragments are folded in arrival order. Cloud fragments are trimmed and get a
sentence terminator, local fragments are joined with a trailing space and
error fragments become a visible inline marker. The transcript only grows;
replaying the same fragments always yields the same string.
"""

import re
import logging
from typing import Iterable

from ..models.transcription import FragmentKind, TranscriptFragment

logger = logging.getLogger(__name__)

_TERMINATOR = re.compile(r"[.?!]$")


def normalize_cloud_text(text: str) -> str:
    """Trim and make sure the text ends a sentence, followed by one space."""
    trimmed = text.strip()
    if not trimmed:
        return ""
    return trimmed + (" " if _TERMINATOR.search(trimmed) else ". ")


def format_local_text(text: str) -> str:
    return text + " " if text else ""


def format_error_marker(message: str) -> str:
    return f"\n[Cloud Transcription Error: {message}]\n"


def format_fragment(fragment: TranscriptFragment) -> str:
    if fragment.kind is FragmentKind.CLOUD:
        return normalize_cloud_text(fragment.text)
    if fragment.kind is FragmentKind.LOCAL:
        return format_local_text(fragment.text)
    return format_error_marker(fragment.text)


def assemble(fragments: Iterable[TranscriptFragment]) -> str:
    """Ordered concatenation of formatted fragments."""
    return "".join(format_fragment(fragment) for fragment in fragments)


class TranscriptAssembler:
    """Holds the cumulative raw transcript of the current note."""

    def __init__(self, initial: str = ""):
        self.text = initial
        self.fragment_count = 0

    def append(self, fragment: TranscriptFragment) -> str:
        formatted = format_fragment(fragment)
        if formatted:
            self.text += formatted
            self.fragment_count += 1
            logger.debug(f"Appended {fragment.kind.value} fragment #{fragment.sequence}: "
                         f"{formatted[:50]!r}")
        return self.text

    def replace(self, fragment: TranscriptFragment) -> str:
        """Reset to a single fragment (whole-file transcription)."""
        self.text = format_fragment(fragment)
        self.fragment_count = 1 if self.text else 0
        return self.text

    def reset(self) -> None:
        self.text = ""
        self.fragment_count = 0
