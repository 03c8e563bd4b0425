"""
Tests for the UI-facing request dispatcher.
"""

from unittest.mock import Mock

import pytest

from conftest import make_snapshot, webm_bytes
from murmullo.bridge import PipelineBridge
from murmullo.errors import AlreadyActive, TranscriptionFailed
from murmullo.history import JsonlHistoryStore
from murmullo.types import (
    AudioFormat, CorrectionResult, PasteResult, RepairedBuffer, SessionState, TranscriptionResult,
)


@pytest.fixture
def parts(tmp_path):
    controller = Mock()
    controller.start.return_value = "abc123"
    controller.stop.return_value = "abc123"
    controller.state = SessionState.CAPTURING

    paste = Mock()
    paste.paste_and_restore.return_value = PasteResult(True, True)

    guard = Mock()
    guard.validate_or_repair.side_effect = lambda audio: RepairedBuffer(audio, AudioFormat.VALID_WEBM)
    transcriber = Mock()
    transcriber.transcribe.return_value = TranscriptionResult("hola mundo", "openai", 12)
    corrector = Mock()
    corrector.correct.return_value = CorrectionResult("Hola, mundo.", "openai", 8)

    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    history = JsonlHistoryStore(tmp_path / "history.jsonl")

    seen = {}

    def transcriber_factory(snapshot):
        seen["transcribe"] = snapshot
        return transcriber

    def corrector_factory(snapshot):
        seen["correct"] = snapshot
        return corrector

    bridge = PipelineBridge(
        controller,
        make_snapshot,
        paste,
        history,
        log_dir,
        guard_factory=lambda s: guard,
        transcriber_factory=transcriber_factory,
        corrector_factory=corrector_factory,
    )
    return bridge, controller, paste, transcriber, corrector, log_dir, seen


class TestDispatch:

    def test_unknown_operation(self, parts):
        bridge = parts[0]
        result = bridge.handle("format-disk", {})
        assert result["success"] is False
        assert "Unknown operation" in result["error"]

    def test_rejected_payload_never_reaches_pipeline(self, parts):
        bridge, _, paste = parts[:3]

        result = bridge.handle("paste-text", {"text": None})

        assert result == {"success": False, "error": "Invalid text"}
        paste.paste_and_restore.assert_not_called()

    def test_start_and_stop_capture(self, parts):
        bridge, controller = parts[:2]

        assert bridge.handle("start-capture", {"force": True}) == {
            "success": True, "session_id": "abc123", "state": "capturing",
        }
        controller.start.assert_called_once_with(force=True)
        assert bridge.handle("stop-capture")["session_id"] == "abc123"

    def test_already_active_reported(self, parts):
        bridge, controller = parts[:2]
        controller.start.side_effect = AlreadyActive()

        result = bridge.handle("start-capture", {})

        assert result == {"success": False, "error": AlreadyActive.default_message}

    def test_unexpected_error_reported(self, parts):
        bridge, controller = parts[:2]
        controller.stop.side_effect = RuntimeError("bug")

        result = bridge.handle("stop-capture", {})

        assert result["success"] is False
        assert "bug" not in result["error"]


class TestPipelineOperations:

    def test_transcribe_with_language_override(self, parts):
        bridge, *_, seen = parts

        result = bridge.handle("transcribe", {"audio": webm_bytes(2000), "options": {"language": "en"}})

        assert result == {"success": True, "text": "hola mundo", "provider": "openai", "latency_ms": 12}
        assert seen["transcribe"].language == "en"

    def test_transcribe_failure(self, parts):
        bridge, _, _, transcriber = parts[:4]
        transcriber.transcribe.side_effect = TranscriptionFailed("HTTP 500", user_message="Try again")

        assert bridge.handle("transcribe", {"audio": webm_bytes(2000)}) == {
            "success": False, "error": "Try again",
        }
        transcriber.close.assert_called_once()

    def test_correct_text_forces_smart_mode(self, parts):
        bridge, *_, seen = parts

        result = bridge.handle("correct-text", {"text": "hola mundo", "options": {"provider": "openai"}})

        assert result["text"] == "Hola, mundo."
        assert result["is_processed"] is True
        assert seen["correct"].processing_mode == "smart"
        assert seen["correct"].reasoning_provider == "openai"

    def test_paste_failure_reported(self, parts):
        bridge, _, paste = parts[:3]
        paste.paste_and_restore.return_value = PasteResult(False, True, "timed out")

        result = bridge.handle("paste-text", {"text": "hola"})

        assert result == {"success": False, "clipboard_restored": True, "error": "timed out"}

    def test_history_round_trip(self, parts):
        bridge = parts[0]

        assert bridge.handle("save-transcription", {"original_text": "uno"})["success"]
        assert bridge.handle("save-transcription", {"original_text": "dos"})["success"]
        result = bridge.handle("get-transcriptions", {"limit": 1})

        assert result["success"] is True
        assert [r["original_text"] for r in result["transcriptions"]] == ["dos"]


class TestReadLogFile:

    def test_reads_file_in_log_dir(self, parts):
        bridge, *_, log_dir, _ = parts
        (log_dir / "murmullo.log").write_text("line one\n", encoding="utf-8")

        result = bridge.handle("read-log-file", {"filename": "murmullo.log"})

        assert result == {"success": True, "filename": "murmullo.log", "content": "line one\n"}

    def test_missing_file(self, parts):
        bridge = parts[0]
        assert bridge.handle("read-log-file", {"filename": "nope.log"}) == {
            "success": False, "error": "Log file not found",
        }

    def test_traversal_rejected(self, parts):
        bridge = parts[0]
        assert bridge.handle("read-log-file", {"filename": "../history.log"})["success"] is False
