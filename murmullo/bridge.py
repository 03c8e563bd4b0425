"""
Request dispatcher between the UI process and the pipeline.

Every request is validated first; only typed, well-formed requests reach
the controller and gateways. Results are plain dicts with a "success" key
so they can cross any IPC channel as JSON.
"""

import dataclasses
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .config import Config
from .errors import MurmulloError, SessionCancelled, ValidationRejected
from .history import HistoryStore
from .output import ClipboardPasteOrchestrator
from .session import RecordingController, build_corrector, build_guard, build_transcriber
from .types import ConfigSnapshot
from .validate import (
    CorrectTextRequest, GetTranscriptionsRequest, Operation, PasteTextRequest,
    ReadLogFileRequest, SaveTranscriptionRequest, StartCaptureRequest, TranscribeRequest,
    validate_request,
)

logger = logging.getLogger(__name__)


UNEXPECTED_MESSAGE = "Unexpected error, please retry."

Result = Dict[str, Any]


class PipelineBridge:
    """
    Usage:
        bridge = PipelineBridge(controller, config.snapshot, orchestrator, history, config.log_dir)
        bridge.handle("paste-text", {"text": "hola"})
        # {"success": True, "clipboard_restored": True}
    """

    def __init__(
        self,
        controller: RecordingController,
        config_snapshot_fn: Callable[[], ConfigSnapshot],
        paste_orchestrator: ClipboardPasteOrchestrator,
        history: Optional[HistoryStore],
        log_dir: Path,
        guard_factory=build_guard,
        transcriber_factory=build_transcriber,
        corrector_factory=build_corrector,
    ):
        self.controller = controller
        self.config_snapshot_fn = config_snapshot_fn
        self.paste = paste_orchestrator
        self.history = history
        self.log_dir = log_dir
        self.guard_factory = guard_factory
        self.transcriber_factory = transcriber_factory
        self.corrector_factory = corrector_factory

        self._handlers = {
            Operation.START_CAPTURE: self._start_capture,
            Operation.STOP_CAPTURE: self._stop_capture,
            Operation.TRANSCRIBE: self._transcribe,
            Operation.CORRECT_TEXT: self._correct_text,
            Operation.PASTE_TEXT: self._paste_text,
            Operation.SAVE_TRANSCRIPTION: self._save_transcription,
            Operation.GET_TRANSCRIPTIONS: self._get_transcriptions,
            Operation.READ_LOG_FILE: self._read_log_file,
        }

    @classmethod
    def from_config(
        cls,
        config: Config,
        controller: RecordingController,
        paste_orchestrator: ClipboardPasteOrchestrator,
        history: Optional[HistoryStore],
    ) -> "PipelineBridge":
        return cls(controller, config.snapshot, paste_orchestrator, history, config.log_dir)

    def handle(self, operation: Any, payload: Optional[Mapping[str, Any]] = None) -> Result:
        """Validate and dispatch one request. Never raises."""
        try:
            op, request = validate_request(operation, payload)
        except ValidationRejected as e:
            logger.warning("[Bridge] Rejected %r: %s", operation, e)
            return {"success": False, "error": e.user_message}

        try:
            return self._handlers[op](request)
        except MurmulloError as e:
            logger.error("[Bridge] %s failed: %s", op.value, e)
            return {"success": False, "error": e.user_message}
        except SessionCancelled:
            return {"success": False, "error": "Cancelled"}
        except Exception:
            logger.exception("[Bridge] %s raised unexpectedly", op.value)
            return {"success": False, "error": UNEXPECTED_MESSAGE}

    def _start_capture(self, request: StartCaptureRequest) -> Result:
        session_id = self.controller.start(force=request.force)
        return {"success": True, "session_id": session_id, "state": self.controller.state.value}

    def _stop_capture(self, request) -> Result:
        session_id = self.controller.stop()
        return {"success": True, "session_id": session_id, "state": self.controller.state.value}

    def _transcribe(self, request: TranscribeRequest) -> Result:
        snapshot = self.config_snapshot_fn()
        if request.language:
            snapshot = dataclasses.replace(snapshot, language=request.language)

        buffer = self.guard_factory(snapshot).validate_or_repair(request.audio)
        gateway = self.transcriber_factory(snapshot)
        try:
            result = gateway.transcribe(buffer)
        finally:
            gateway.close()
        return {
            "success": True,
            "text": result.text,
            "provider": result.provider,
            "latency_ms": result.latency_ms,
        }

    def _correct_text(self, request: CorrectTextRequest) -> Result:
        snapshot = dataclasses.replace(
            self.config_snapshot_fn(),
            processing_mode="smart",
        )
        if request.provider:
            snapshot = dataclasses.replace(snapshot, reasoning_provider=request.provider)

        gateway = self.corrector_factory(snapshot)
        try:
            result = gateway.correct(request.text)
        finally:
            gateway.close()
        response = {
            "success": True,
            "text": result.text,
            "provider": result.provider,
            "is_processed": result.is_processed,
        }
        if result.error:
            response["error"] = result.error
        return response

    def _paste_text(self, request: PasteTextRequest) -> Result:
        result = self.paste.paste_and_restore(request.text)
        response = {"success": result.success, "clipboard_restored": result.clipboard_restored}
        if not result.success:
            response["error"] = result.reason
        return response

    def _save_transcription(self, request: SaveTranscriptionRequest) -> Result:
        if self.history is None:
            return {"success": False, "error": "History is disabled"}
        self.history.save(request.record)
        return {"success": True}

    def _get_transcriptions(self, request: GetTranscriptionsRequest) -> Result:
        if self.history is None:
            return {"success": True, "transcriptions": []}
        records = self.history.recent(request.limit)
        return {"success": True, "transcriptions": [dataclasses.asdict(r) for r in records]}

    def _read_log_file(self, request: ReadLogFileRequest) -> Result:
        log_dir = self.log_dir.resolve()
        path = (log_dir / request.filename).resolve()
        if path.parent != log_dir:
            raise ValidationRejected("Invalid filename")
        if not path.is_file():
            return {"success": False, "error": "Log file not found"}
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.error("[Bridge] Could not read %s: %s", path, e)
            return {"success": False, "error": "Could not read log file"}
        return {"success": True, "filename": request.filename, "content": content}
