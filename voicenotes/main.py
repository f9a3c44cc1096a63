"""Main application entry point for voicenotes."""

import sys
import signal
import asyncio
import argparse
import logging
from pathlib import Path
from typing import Optional

from pubsub import pub
from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from .config import VoiceNotesConfig
from .errors import VoiceNotesError
from .models.note import Engine
from .services.session_controller import SessionController
from .services.status import StatusPublisher, STATUS_TOPIC
from .storage.exporter import NoteExporter
from .transcription.gemini_client import GeminiClient
from .transcription.polisher import PolishInvoker

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "voicenotes.yaml"
LEVEL_BAR_COUNT = 16
LEVEL_GLYPHS = " ▁▂▃▄▅▆▇█"


def format_elapsed(seconds: float) -> str:
    """Format a duration as MM:SS.hh."""
    centiseconds = int(max(seconds, 0.0) * 100)
    minutes, rest = divmod(centiseconds, 6000)
    secs, hundredths = divmod(rest, 100)
    return f"{minutes:02d}:{secs:02d}.{hundredths:02d}"


def render_level_bar(levels) -> str:
    if levels is None:
        return " " * LEVEL_BAR_COUNT
    top = len(LEVEL_GLYPHS) - 1
    return "".join(LEVEL_GLYPHS[min(top, int(level * top))] for level in levels)


class VoiceNotesApp:

    def __init__(self, config_path: str, log_level: Optional[str] = None):
        # Load configuration
        self.config = VoiceNotesConfig(config_path)
        # Set up logging (override config with command line if specified)
        level = log_level or self.config.get('logging.level', 'INFO')
        setup_logging(self.config, level)
        self.console = Console()
        self.stop_requested: Optional[asyncio.Event] = None

    def init(self):
        # Initialize services
        logger.info("Initializing services...")

        self.gemini = GeminiClient(
            api_key=self.config.get_gemini_api_key(),
            model=self.config.get('gemini.model', 'gemini-2.5-flash'),
            base_url=self.config.get('gemini.base_url', 'https://generativelanguage.googleapis.com/v1beta'),
            timeout_seconds=self.config.get('gemini.timeout_seconds', 60),
        )
        self.status = StatusPublisher()
        self.polisher = PolishInvoker(self.gemini, self.status)
        self.controller = SessionController.from_config(self.config, self.gemini, self.polisher, self.status)
        self.exporter = NoteExporter(self.config.get_export_directory())

        # pypubsub holds listeners weakly; keep the bound method alive on self
        pub.subscribe(self._on_status, STATUS_TOPIC)

    def _on_status(self, message: str, state: str = "idle"):
        self.console.print(f"[dim]{state:>10}[/dim]  {escape(message)}")

    async def run(self, engine: Engine, duration: Optional[float] = None,
                  upload: Optional[str] = None, polish: bool = False, export: bool = False) -> int:
        try:
            if upload:
                if not await self.controller.transcribe_file(upload):
                    return 1
            else:
                await self.controller.select_engine(engine)
                await self.controller.start()
                await self._record(duration)
                await self.controller.stop()

                if polish:
                    await self.controller.polish()
        except VoiceNotesError as e:
            self.console.print(f"[bold red]{e.status}[/bold red]")
            logger.error(f"Application error: {e.detail}")
            return 1
        finally:
            await self.cleanup()

        self.show_note()
        if export:
            self.export_note()
        return 0

    async def _record(self, duration: Optional[float]) -> None:
        loop = asyncio.get_running_loop()
        self.stop_requested = asyncio.Event()
        try:
            loop.add_signal_handler(signal.SIGINT, self.stop_requested.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable; Ctrl+C will interrupt the loop")

        self.console.print("Recording... press Ctrl+C to stop.", style="bold red")
        try:
            with Live(self._render_timer(), console=self.console, refresh_per_second=10) as live:
                while self.controller.session is not None and not self.stop_requested.is_set():
                    if duration and self.controller.elapsed_seconds >= duration:
                        break
                    live.update(self._render_timer())
                    await asyncio.sleep(0.05)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    def _render_timer(self) -> Text:
        session = self.controller.session
        levels = session.meter.level_bars(LEVEL_BAR_COUNT) if session and session.meter else None
        text = Text()
        text.append(format_elapsed(self.controller.elapsed_seconds), style="bold")
        text.append("  ")
        text.append(render_level_bar(levels), style="green")
        return text

    def show_note(self):
        note = self.controller.note
        if not note.has_content:
            self.console.print("No transcript captured.", style="yellow")
            return

        raw = Panel(Text(note.raw_transcript.strip()), title="Raw transcript", border_style="blue")
        if note.is_unpolished_local:
            polished = Panel(Text("Local transcript not polished yet. Run with --polish to polish it."),
                             title="Polished note", border_style="yellow")
        else:
            polished = Panel(Text(note.polished_note.strip()), title="Polished note", border_style="green")
        self.console.print(Panel(Group(raw, polished), title=note.title))

    def export_note(self):
        note = self.controller.note
        if not note.has_content:
            self.console.print("Nothing to export.", style="yellow")
            return

        saved = [self.exporter.save_raw(note), self.exporter.save_polished(note)]
        chunks = self.controller.audio_chunks
        if note.source_engine is Engine.LOCAL and chunks:
            caption_export = self.exporter.export_captions(note, chunks)
            saved.extend(caption_export.files)
            self.console.print("To combine audio and captions into a video, run:", style="blue")
            self.console.print(caption_export.ffmpeg_command, markup=False, highlight=False)

        for path in saved:
            self.console.print(f"Saved {path}", style="green")

    async def cleanup(self):
        if self.controller.session is not None:
            await self.controller.stop()


def setup_logging(config, level: str = "INFO") -> None:

    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'logs/voicenotes.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # Set up handlers
    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    # Log startup
    logger = logging.getLogger(__name__)
    logger.info("="*50)
    logger.info("voicenotes starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("="*50)


def main() -> None:
    """Main entry point for voicenotes."""
    parser = argparse.ArgumentParser(
        description="voicenotes - Record speech and turn it into polished notes",
        epilog="Records until --duration elapses or Ctrl+C is pressed"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )

    parser.add_argument(
        "--engine",
        type=str,
        default=Engine.CLOUD.value,
        choices=[engine.value for engine in Engine],
        help="Transcription engine (default: cloud)"
    )

    parser.add_argument(
        "--duration",
        type=float,
        help="Stop recording after this many seconds"
    )

    parser.add_argument(
        "--upload",
        type=str,
        metavar="FILE",
        help="Transcribe an audio file with the cloud engine instead of recording"
    )

    parser.add_argument(
        "--polish",
        action="store_true",
        help="Polish a local transcript with the cloud service after recording"
    )

    parser.add_argument(
        "--export",
        action="store_true",
        help="Write transcript, note and (local) audio/caption files to the export directory"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"voicenotes v{__version__}"
    )

    args = parser.parse_args()

    try:
        app = VoiceNotesApp(args.config, args.log_level)
        app.init()
        exit_code = asyncio.run(app.run(
            engine=Engine(args.engine),
            duration=args.duration,
            upload=args.upload,
            polish=args.polish,
            export=args.export,
        ))
    except KeyboardInterrupt:
        print("\nGoodbye!")
        exit_code = 0
    except Exception as e:
        print(f"Error: {e}")
        logging.error(f"Application error: {e}")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
