"""
Transcription gateway for the Whisper API.

Builds the multipart body by hand, sends it through the shared retry
policy and reformats inline numbered lists in the returned text.
"""

import logging
import re
import threading
import time
import uuid
from typing import List, Optional, Tuple

import requests

from .errors import SessionCancelled, TranscriptionFailed
from .retry import DEFAULT_MAX_ATTEMPTS, fetch_with_retry
from .types import RepairedBuffer, TranscriptionResult

logger = logging.getLogger(__name__)


TRANSCRIPTION_URL = "https://api.openai.com/v1/audio/transcriptions"
PROVIDER_NAME = "openai"
MIN_AUDIO_BYTES = 1000

# Anchors Whisper to literal dictation and reduces hallucinated content
ANTI_HALLUCINATION_PROMPT = (
    "Transcripción literal de dictado de voz en español. Transcribir exactamente "
    "lo que se dice, palabra por palabra, sin interpretar ni resumir."
)

CRLF = b"\r\n"

# A list marker: digits then "." or ")" then whitespace, e.g. "2. " or "3) "
_LIST_MARKER = re.compile(r"\d+[.)]\s")
_BREAK_BEFORE_MARKER = re.compile(r"(?<=\S)[ \t]+(?=\d+[.)]\s)")


def format_numbered_list(text: str) -> str:
    """
    Put inline numbered-list items on their own lines.

    "tareas: 1. compilar 2. probar" -> "tareas:\\n1. compilar\\n2. probar"

    Only applies when at least two markers are present, so a lone
    "version 2. " in prose is left alone. Decimals like "3.5" never match
    because a marker needs whitespace after the punctuation.
    """
    if len(_LIST_MARKER.findall(text)) < 2:
        return text
    return _BREAK_BEFORE_MARKER.sub("\n", text)


def build_multipart(
    fields: List[Tuple[str, str]],
    file_field: str,
    filename: str,
    content_type: str,
    file_data: bytes,
    boundary: Optional[str] = None,
) -> Tuple[bytes, str]:
    """
    Encode a multipart/form-data body.

    Returns:
        (body, content_type_header)
    """
    boundary = boundary or f"----MurmulloBoundary{uuid.uuid4().hex}"
    dash_boundary = f"--{boundary}".encode("ascii")

    parts: List[bytes] = [
        dash_boundary, CRLF,
        f'Content-Disposition: form-data; name="{file_field}"; filename="{filename}"'.encode("utf-8"), CRLF,
        f"Content-Type: {content_type}".encode("ascii"), CRLF, CRLF,
        file_data, CRLF,
    ]
    for name, value in fields:
        parts += [
            dash_boundary, CRLF,
            f'Content-Disposition: form-data; name="{name}"'.encode("utf-8"), CRLF, CRLF,
            value.encode("utf-8"), CRLF,
        ]
    parts += [dash_boundary, b"--", CRLF]

    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


class TranscriptionGateway:
    """
    Cloud transcription using OpenAI's Whisper endpoint.

    Usage:
        gateway = TranscriptionGateway(api_key, language="es")
        result = gateway.transcribe(repaired_buffer)
    """

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        language: str = "es",
        timeout: float = 30.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        session: Optional[requests.Session] = None,
        url: str = TRANSCRIPTION_URL,
    ):
        self.api_key = api_key
        self.model = model
        self.language = language
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.url = url
        # Persistent session for connection reuse
        self._session = session or requests.Session()

    def build_fields(self) -> List[Tuple[str, str]]:
        fields = [("model", self.model)]
        if self.language and self.language != "auto":
            fields.append(("language", self.language))
        fields += [
            ("response_format", "json"),
            ("prompt", ANTI_HALLUCINATION_PROMPT),
            ("temperature", "0"),
        ]
        return fields

    def transcribe(
        self,
        audio: RepairedBuffer,
        cancel_event: Optional[threading.Event] = None,
    ) -> TranscriptionResult:
        """
        Transcribe an already validated buffer.

        Raises:
            TranscriptionFailed: missing key, audio too short, retries
                exhausted, client error or unreadable response.
            SessionCancelled: the session was superseded mid-retry.
        """
        if not self.api_key:
            raise TranscriptionFailed(
                "OpenAI API key not configured",
                user_message="OpenAI API key not configured. Please add it in Settings.",
            )
        if len(audio.data) < MIN_AUDIO_BYTES:
            raise TranscriptionFailed(
                f"Audio data too small ({len(audio.data)} bytes)",
                user_message="Recording too short. Please speak longer.",
            )

        body, content_type = build_multipart(
            self.build_fields(),
            file_field="file",
            filename=audio.filename,
            content_type=audio.content_type,
            file_data=audio.data,
        )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": content_type,
        }

        def send() -> requests.Response:
            return self._session.post(self.url, data=body, headers=headers, timeout=self.timeout)

        start = time.perf_counter()
        try:
            response = fetch_with_retry(
                send,
                max_attempts=self.max_attempts,
                cancel_event=cancel_event,
                label="transcription",
            )
        except SessionCancelled:
            raise
        except Exception as e:
            raise TranscriptionFailed(f"Transcription request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TranscriptionFailed(
                f"Whisper API error {response.status_code}: {response.text[:300]}"
            )

        try:
            text = response.json()["text"]
        except (ValueError, KeyError, TypeError) as e:
            raise TranscriptionFailed(f"Unexpected Whisper response: {e}") from e

        latency_ms = int((time.perf_counter() - start) * 1000)
        text = format_numbered_list((text or "").strip())
        logger.info("[Transcribe] %s %.2fs -> \"%s\"", self.name, latency_ms / 1000, text[:50])

        return TranscriptionResult(text=text, provider=self.name, latency_ms=latency_ms)

    def close(self) -> None:
        self._session.close()
