"""voicenotes - record speech and turn it into polished notes."""

__version__ = "0.1.0"
