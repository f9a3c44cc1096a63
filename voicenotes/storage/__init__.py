"""Export storage for voicenotes."""

from .exporter import NoteExporter, CaptionExport, sanitize_title, format_timestamp_srt

__all__ = [
    "NoteExporter",
    "CaptionExport",
    "sanitize_title",
    "format_timestamp_srt",
]
