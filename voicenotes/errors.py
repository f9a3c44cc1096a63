"""Exception hierarchy for voicenotes.

Every error carries a short user-visible ``status`` string so that callers can
surface it directly without re-classifying the failure.
"""

from typing import Optional


class VoiceNotesError(Exception):
    """Base exception for all voicenotes errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "VOICENOTES_ERROR",
        status: Optional[str] = None,
    ) -> None:
        self.detail = detail
        self.code = code
        self.status = status or f"Error: {detail}"
        super().__init__(detail)


class DeviceError(VoiceNotesError):
    """Raised when the microphone cannot be acquired."""


class PermissionDeniedError(DeviceError):
    def __init__(self, detail: str = "Microphone permission denied") -> None:
        super().__init__(
            detail=detail,
            code="PERMISSION_DENIED",
            status="Microphone permission denied. Check system settings & retry.",
        )


class DeviceNotFoundError(DeviceError):
    def __init__(self, detail: str = "Requested device not found") -> None:
        super().__init__(
            detail=detail,
            code="DEVICE_NOT_FOUND",
            status="No microphone found. Connect a microphone and try again.",
        )


class DeviceBusyError(DeviceError):
    def __init__(self, detail: str = "Microphone is in use or cannot be read") -> None:
        super().__init__(
            detail=detail,
            code="DEVICE_BUSY",
            status="Mic in use or cannot be accessed. Check other apps/settings.",
        )


class TransportError(VoiceNotesError):
    """Raised when the local signaling handshake or peer connection fails."""

    def __init__(self, detail: str = "Local WebRTC transport failed") -> None:
        super().__init__(detail=detail, code="TRANSPORT_ERROR", status=f"Error: {detail}")


class StreamError(VoiceNotesError):
    """Raised when the local transcript event stream fails."""

    def __init__(self, detail: str = "Transcript stream failed") -> None:
        super().__init__(
            detail=detail,
            code="STREAM_ERROR",
            status="Transcription connection error. Stream may have ended or server issue.",
        )


class ServiceError(VoiceNotesError):
    """Raised when a transcription or polish request fails."""

    def __init__(self, detail: str = "Generative service request failed") -> None:
        super().__init__(detail=detail, code="SERVICE_ERROR", status=f"Cloud service error: {detail[:100]}")


class SessionAlreadyActiveError(VoiceNotesError):
    def __init__(self) -> None:
        super().__init__(
            detail="A recording session is already active",
            code="SESSION_ALREADY_ACTIVE",
            status="Please stop recording first.",
        )


class EngineSwitchRefusedError(VoiceNotesError):
    def __init__(self) -> None:
        super().__init__(
            detail="Cannot switch engines during a cloud recording",
            code="ENGINE_SWITCH_REFUSED",
            status="Please stop the current Cloud recording before changing the inference engine.",
        )
