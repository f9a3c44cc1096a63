"""Note export: transcript files, combined audio and a caption track."""

import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..audio.recorder import pcm_to_wav, wav_to_pcm
from ..models.note import Engine, Note
from ..models.transcription import AudioChunk

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Note"
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*.,!\s]+')

CAPTION_STYLE = "Fontsize=24,PrimaryColour=&H00FFFFFF&,BorderStyle=3,Outline=1,Shadow=0.5"


def sanitize_title(title: Optional[str]) -> str:
    title = (title or "").strip() or DEFAULT_TITLE
    return _UNSAFE_FILENAME_CHARS.sub("_", title)


def format_timestamp_srt(total_seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm)."""
    total_ms = int(max(total_seconds, 0.0) * 1000)
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, milliseconds = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{milliseconds:03d}"


def build_srt(text: str, duration_seconds: float) -> str:
    """A single caption cue spanning the whole recording."""
    return f"1\n00:00:00,000 --> {format_timestamp_srt(duration_seconds)}\n{text.strip()}\n"


def combine_wav_chunks(chunks: Sequence[AudioChunk]) -> bytes:
    """Concatenate WAV chunks that share one PCM format into a single WAV."""
    pcm = bytearray()
    params = None
    for chunk in chunks:
        data, rate, channels, width = wav_to_pcm(chunk.data)
        if params is None:
            params = (rate, channels, width)
        elif params != (rate, channels, width):
            raise ValueError(f"Audio chunk #{chunk.sequence} has a different format: "
                             f"{(rate, channels, width)} != {params}")
        pcm.extend(data)
    if params is None:
        raise ValueError("No audio chunks to combine")
    return pcm_to_wav(bytes(pcm), *params)


@dataclass
class CaptionExport:
    """Files written for an audio-plus-captions export."""
    audio_path: Path
    captions_path: Path
    duration_seconds: float
    ffmpeg_command: str
    files: List[Path] = field(default_factory=list)


class NoteExporter:
    """Writes the current note and its audio to the export directory."""

    def __init__(self, export_dir: str = "./exports"):
        """Initialize note exporter.

        Args:
            export_dir: Directory all exported files are written to
        """
        self.export_dir = Path(export_dir)
        self.export_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"NoteExporter initialized with export_dir: {self.export_dir}")

    def _write_text(self, filename: str, content: str) -> Path:
        path = self.export_dir / filename
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        logger.info(f"Exported {path} ({len(content)} chars)")
        return path

    def save_raw(self, note: Note) -> Path:
        return self._write_text(f"{sanitize_title(note.title)}_raw.txt", note.raw_transcript)

    def save_polished(self, note: Note) -> Path:
        """Save the polished note as HTML.

        A local note that was never polished is saved as plain raw text.
        """
        title = sanitize_title(note.title)
        if note.is_unpolished_local:
            logger.info("Local note not polished yet; saving raw transcript as text")
            return self._write_text(f"{title}_polished.txt", note.raw_transcript)
        return self._write_text(f"{title}_polished.html", note.polished_note)

    def export_captions(self, note: Note, chunks: Sequence[AudioChunk]) -> CaptionExport:
        """Write combined audio and an SRT caption file for a local recording.

        Raises:
            ValueError: If the note is not a local recording with audio
        """
        if note.source_engine is not Engine.LOCAL or not chunks:
            raise ValueError("Video/caption export is only available for "
                             "completed local recordings with audio.")

        title = sanitize_title(note.title)
        duration = sum(chunk.duration_seconds for chunk in chunks)

        audio_path = self.export_dir / f"{title}_audio.wav"
        with open(audio_path, 'wb') as f:
            f.write(combine_wav_chunks(chunks))
        logger.info(f"Exported combined audio: {audio_path} ({len(chunks)} chunks, {duration:.2f}s)")

        captions_path = self._write_text(f"{title}_captions.srt",
                                         build_srt(note.raw_transcript, duration))

        command = self.ffmpeg_command(audio_path.name, captions_path.name, f"{title}_video_with_captions.mp4")
        return CaptionExport(
            audio_path=audio_path,
            captions_path=captions_path,
            duration_seconds=duration,
            ffmpeg_command=command,
            files=[audio_path, captions_path],
        )

    @staticmethod
    def ffmpeg_command(audio_filename: str, captions_filename: str, output_filename: str) -> str:
        return (
            f"ffmpeg -f lavfi -i color=c=black:s=1280x720 -i {audio_filename} "
            f"-vf \"subtitles={captions_filename}:force_style='{CAPTION_STYLE}'\" "
            f"-c:a aac -shortest {output_filename}"
        )
