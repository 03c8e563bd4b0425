"""
Shared type definitions for Murmullo.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATES = (SessionState.CAPTURING, SessionState.PROCESSING)


class AudioFormat(str, Enum):
    VALID_WEBM = "webm"
    VALID_WAV = "wav"
    CORRUPTED_UNKNOWN = "unknown"


CONTENT_TYPES = {
    AudioFormat.VALID_WEBM: "audio/webm",
    AudioFormat.VALID_WAV: "audio/wav",
}


@dataclass
class RecordingSession:
    """
    One capture attempt, owned by the RecordingController.

    The id is compared against late callbacks so a stale pipeline
    cannot write into a newer session.
    """
    id: str
    state: SessionState = SessionState.IDLE
    raw_audio: Optional[bytes] = None
    created_at: float = field(default_factory=time.time)
    stopped_at: Optional[float] = None


@dataclass(frozen=True)
class AudioContainerProbe:
    """Result of sniffing a buffer header. Never mutates the buffer."""
    format: AudioFormat
    header_bytes: bytes

    @property
    def header_hex(self) -> str:
        return self.header_bytes.hex()

    @property
    def is_valid(self) -> bool:
        return self.format != AudioFormat.CORRUPTED_UNKNOWN


@dataclass(frozen=True)
class RepairedBuffer:
    """Audio ready for upload, tagged with its content type."""
    data: bytes
    format: AudioFormat
    repaired: bool = False

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]

    @property
    def filename(self) -> str:
        return f"audio.{self.format.value}"


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    provider: str
    latency_ms: int


@dataclass(frozen=True)
class CorrectionResult:
    """
    Output of the correction stage.

    is_processed is False when the provider failed or was skipped; text is
    then the untouched input.
    """
    text: str
    provider: str
    latency_ms: int
    is_processed: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class ClipboardSnapshot:
    had_content: bool
    content: str


@dataclass(frozen=True)
class PasteResult:
    success: bool
    clipboard_restored: bool
    reason: str = ""


@dataclass(frozen=True)
class HistoryRecord:
    """Shape handed to the persistence collaborator."""
    original_text: str
    processed_text: Optional[str]
    is_processed: bool
    processing_method: str
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SessionStatus:
    """Terminal status delivered to the UI boundary."""
    session_id: str
    state: SessionState
    text: str = ""
    message: str = ""
    corrected: bool = False
    paste_failed: bool = False


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable snapshot of configuration for a session.
    Ensures config changes mid-session don't cause inconsistency.
    """
    # Transcription
    language: str
    transcription_model: str
    openai_api_key: str

    # Correction
    processing_mode: str
    reasoning_provider: str
    anthropic_model: str
    openai_model: str
    anthropic_api_key: str

    # Repair
    ffmpeg_path: str

    # Timeouts (seconds)
    device_timeout: float
    repair_timeout: float
    request_timeout: float
    paste_timeout: float

    # Retry
    max_attempts: int

    # UI dwell (seconds)
    success_dwell: float
    failure_dwell: float
