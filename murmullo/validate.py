"""
Boundary validation for requests coming from the UI side.

Every payload is checked against a fixed per-operation shape before the
pipeline sees it. Unknown operations and unknown keys are rejected.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .config import LANGUAGES, REASONING_PROVIDERS
from .errors import ValidationRejected
from .history import MAX_LIST_LIMIT
from .types import HistoryRecord


MAX_AUDIO_BYTES = 50 * 1024 * 1024
MAX_TEXT_LENGTH = 10000
DEFAULT_LIST_LIMIT = 50

_LOG_FILENAME = re.compile(r"^[a-zA-Z0-9_\-.]+$")


class Operation(str, Enum):
    START_CAPTURE = "start-capture"
    STOP_CAPTURE = "stop-capture"
    TRANSCRIBE = "transcribe"
    CORRECT_TEXT = "correct-text"
    PASTE_TEXT = "paste-text"
    SAVE_TRANSCRIPTION = "save-transcription"
    GET_TRANSCRIPTIONS = "get-transcriptions"
    READ_LOG_FILE = "read-log-file"


@dataclass(frozen=True)
class StartCaptureRequest:
    force: bool = False


@dataclass(frozen=True)
class StopCaptureRequest:
    pass


@dataclass(frozen=True)
class TranscribeRequest:
    audio: bytes
    language: Optional[str] = None


@dataclass(frozen=True)
class CorrectTextRequest:
    text: str
    provider: Optional[str] = None


@dataclass(frozen=True)
class PasteTextRequest:
    text: str


@dataclass(frozen=True)
class SaveTranscriptionRequest:
    record: HistoryRecord


@dataclass(frozen=True)
class GetTranscriptionsRequest:
    limit: int = DEFAULT_LIST_LIMIT


@dataclass(frozen=True)
class ReadLogFileRequest:
    filename: str


Request = Union[
    StartCaptureRequest, StopCaptureRequest, TranscribeRequest, CorrectTextRequest,
    PasteTextRequest, SaveTranscriptionRequest, GetTranscriptionsRequest, ReadLogFileRequest,
]


def sanitize_text(value: Any, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Trim, cap length and drop NUL bytes. Non-strings become ""."""
    if not isinstance(value, str):
        return ""
    return value.strip()[:max_length].replace("\0", "")


def is_valid_language(value: Any) -> bool:
    return isinstance(value, str) and value in LANGUAGES


def is_valid_provider(value: Any) -> bool:
    return isinstance(value, str) and value in REASONING_PROVIDERS


def is_valid_log_filename(value: Any) -> bool:
    """Plain *.log names only: no separators, no traversal."""
    if not isinstance(value, str):
        return False
    if "/" in value or "\\" in value or ".." in value:
        return False
    if not value.endswith(".log"):
        return False
    return bool(_LOG_FILENAME.match(value))


def coerce_audio(value: Any) -> bytes:
    """
    Accept raw bytes or a list of byte values, as serialized by the UI.

    Raises:
        ValidationRejected: wrong type, empty, over 50MB, or values outside 0-255.
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
    elif isinstance(value, list):
        if len(value) > MAX_AUDIO_BYTES:
            raise ValidationRejected("Invalid audio data: too large")
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
            raise ValidationRejected("Invalid audio data")
        try:
            data = bytes(value)
        except ValueError:
            raise ValidationRejected("Invalid audio data: byte values must be 0-255")
    else:
        raise ValidationRejected("Invalid audio data")

    if not data:
        raise ValidationRejected("Invalid audio data: empty")
    if len(data) > MAX_AUDIO_BYTES:
        raise ValidationRejected("Invalid audio data: too large")
    return data


def validate_request(operation: Any, payload: Optional[Mapping[str, Any]] = None) -> Tuple[Operation, Request]:
    """
    Validate one request and return it as a typed record.

    Raises:
        ValidationRejected: unknown operation or malformed payload.
    """
    try:
        op = Operation(operation)
    except ValueError:
        raise ValidationRejected(f"Unknown operation: {operation}")

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValidationRejected(f"Invalid payload for {op.value}")

    return op, _VALIDATORS[op](payload)


def _closed(payload: Mapping[str, Any], allowed: Tuple[str, ...], what: str = "payload") -> None:
    unknown = set(payload) - set(allowed)
    if unknown:
        raise ValidationRejected(f"Unexpected {what} fields: {', '.join(sorted(map(str, unknown)))}")


def _options(payload: Mapping[str, Any], allowed: Tuple[str, ...]) -> Dict[str, Any]:
    options = payload.get("options")
    if options is None:
        return {}
    if not isinstance(options, Mapping):
        raise ValidationRejected("Invalid options")
    _closed(options, allowed, "option")
    return dict(options)


def _text(payload: Mapping[str, Any]) -> str:
    text = payload.get("text")
    if not isinstance(text, str):
        raise ValidationRejected("Invalid text")
    return sanitize_text(text)


def _start_capture(payload: Mapping[str, Any]) -> StartCaptureRequest:
    _closed(payload, ("force",))
    force = payload.get("force", False)
    if not isinstance(force, bool):
        raise ValidationRejected("Invalid force flag")
    return StartCaptureRequest(force=force)


def _stop_capture(payload: Mapping[str, Any]) -> StopCaptureRequest:
    _closed(payload, ())
    return StopCaptureRequest()


def _transcribe(payload: Mapping[str, Any]) -> TranscribeRequest:
    _closed(payload, ("audio", "options"))
    audio = coerce_audio(payload.get("audio"))
    options = _options(payload, ("language",))
    language = options.get("language")
    if language is not None and not is_valid_language(language):
        raise ValidationRejected("Invalid language")
    return TranscribeRequest(audio=audio, language=language)


def _correct_text(payload: Mapping[str, Any]) -> CorrectTextRequest:
    _closed(payload, ("text", "options"))
    text = _text(payload)
    options = _options(payload, ("provider",))
    provider = options.get("provider")
    if provider is not None and not is_valid_provider(provider):
        raise ValidationRejected("Invalid provider")
    return CorrectTextRequest(text=text, provider=provider)


def _paste_text(payload: Mapping[str, Any]) -> PasteTextRequest:
    _closed(payload, ("text",))
    return PasteTextRequest(text=_text(payload))


def _save_transcription(payload: Mapping[str, Any]) -> SaveTranscriptionRequest:
    _closed(payload, ("original_text", "processed_text", "is_processed", "processing_method"))
    original = payload.get("original_text")
    if not isinstance(original, str):
        raise ValidationRejected("Invalid transcription data")
    processed = payload.get("processed_text")
    if processed is not None and not isinstance(processed, str):
        raise ValidationRejected("Invalid transcription data")
    is_processed = payload.get("is_processed", False)
    if not isinstance(is_processed, bool):
        raise ValidationRejected("Invalid transcription data")
    method = payload.get("processing_method", "none")
    if method != "none" and not is_valid_provider(method):
        raise ValidationRejected("Invalid processing method")

    return SaveTranscriptionRequest(HistoryRecord(
        original_text=sanitize_text(original),
        processed_text=sanitize_text(processed) if processed is not None else None,
        is_processed=is_processed,
        processing_method=method,
    ))


def _get_transcriptions(payload: Mapping[str, Any]) -> GetTranscriptionsRequest:
    _closed(payload, ("limit",))
    limit = payload.get("limit", DEFAULT_LIST_LIMIT)
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIST_LIMIT:
        raise ValidationRejected("Invalid limit")
    return GetTranscriptionsRequest(limit=limit)


def _read_log_file(payload: Mapping[str, Any]) -> ReadLogFileRequest:
    _closed(payload, ("filename",))
    filename = payload.get("filename")
    if not is_valid_log_filename(filename):
        raise ValidationRejected("Invalid filename")
    return ReadLogFileRequest(filename=filename)


_VALIDATORS = {
    Operation.START_CAPTURE: _start_capture,
    Operation.STOP_CAPTURE: _stop_capture,
    Operation.TRANSCRIBE: _transcribe,
    Operation.CORRECT_TEXT: _correct_text,
    Operation.PASTE_TEXT: _paste_text,
    Operation.SAVE_TRANSCRIPTION: _save_transcription,
    Operation.GET_TRANSCRIPTIONS: _get_transcriptions,
    Operation.READ_LOG_FILE: _read_log_file,
}
