"""Error taxonomy for the capture-to-paste pipeline."""

from typing import Optional


class MurmulloError(Exception):
    """Base error. `user_message` is what the UI shows on Failed."""

    fatal = True
    default_message = "Something went wrong, please retry."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.user_message = user_message or message or self.default_message


class AlreadyActive(MurmulloError):
    default_message = "A recording is already in progress."


class DeviceUnavailable(MurmulloError):
    default_message = "Microphone unavailable. Check permissions and hardware."


class CorruptedAudio(MurmulloError):
    """Repair failed. Not transient, so never retried."""

    default_message = "The recording was corrupted, please record again."

    def __init__(self, message: str = "", header_hex: str = ""):
        super().__init__(message, user_message=self.default_message)
        self.header_hex = header_hex


RepairError = CorruptedAudio


class TranscriptionFailed(MurmulloError):
    default_message = "Transcription failed, please retry."


class CorrectionFailed(MurmulloError):
    fatal = False
    default_message = "Correction unavailable, using the raw transcript."


class PasteFailed(MurmulloError):
    fatal = False
    default_message = "Could not paste automatically."


class ValidationRejected(MurmulloError):
    default_message = "Request rejected."


class HttpStatusError(MurmulloError):
    """Synthesized when retries run out on a 5xx response."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class SessionCancelled(Exception):
    """The owning session was superseded. Not a user-facing failure."""
