"""Services layer for voicenotes application logic."""

from .status import StatusPublisher
from .session_controller import SessionController

__all__ = [
    "StatusPublisher",
    "SessionController",
]
