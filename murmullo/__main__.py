"""
Main entry point for Murmullo.

Run with: python -m murmullo

Hotkey presses go through the same validated PipelineBridge an external UI
would use, so the process has a single dispatch surface.
"""

import logging
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping, Optional

from . import __version__
from .audio import AudioEngine
from .bridge import PipelineBridge
from .config import Config
from .history import JsonlHistoryStore
from .input import InputController
from .metrics import MetricsWriter
from .output import (
    ClipboardPasteOrchestrator, PyperclipClipboard, helper_timeout, select_paste_simulator,
)
from .session import RecordingController
from .types import SessionState, SessionStatus
from .validate import Operation

logger = logging.getLogger("murmullo")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_FILE_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5


# Global state
config: Config
metrics: MetricsWriter
controller: RecordingController
bridge: PipelineBridge
_keyboard_listener = None
_stopped = threading.Event()


def setup_logging(log_dir: Path, level: int = logging.INFO) -> None:
    """Console plus a rotating file under log_dir."""
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        log_dir / "murmullo.log",
        maxBytes=LOG_FILE_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console)
    root.addHandler(file_handler)


def main():
    """Main entry point."""
    global config, metrics, controller, bridge, _keyboard_listener

    # pynput needs a display server; import only when actually running
    from pynput import keyboard

    config = Config.load()
    setup_logging(config.log_dir)
    logger.info("Murmullo v%s starting...", __version__)
    logger.info("  Language: %s, mode: %s, provider: %s",
                config.language, config.processing_mode, config.reasoning_provider)
    if not config.openai_api_key:
        logger.warning("  OPENAI_API_KEY is not set; transcription will fail")

    metrics = MetricsWriter(config.metrics_file)
    history = JsonlHistoryStore(config.history_file)

    simulator = select_paste_simulator(timeout=helper_timeout(config.paste_timeout))
    logger.info("  Paste simulator: %s", simulator.name)
    orchestrator = ClipboardPasteOrchestrator(
        PyperclipClipboard(),
        simulator,
        timeout=config.paste_timeout,
    )

    controller = RecordingController(
        config_snapshot_fn=config.snapshot,
        audio_engine=AudioEngine(),
        paste_orchestrator=orchestrator,
        history=history,
        metrics=metrics,
        on_status=on_status,
    )
    bridge = PipelineBridge.from_config(config, controller, orchestrator, history)

    input_controller = InputController(config)
    input_controller.is_recording = lambda: controller.state == SessionState.CAPTURING
    input_controller.on_start_recording = on_start
    input_controller.on_stop_recording = on_stop
    input_controller.on_emergency_reset = controller.cancel

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    _keyboard_listener = keyboard.Listener(
        on_press=input_controller.on_key_press,
        on_release=input_controller.on_key_release
    )
    _keyboard_listener.start()

    logger.info("Ready! Press %s to start and stop recording, Shift+Esc to reset.",
                config.trigger_key)

    try:
        while not _stopped.wait(1.0):
            pass
    finally:
        shutdown()


def dispatch(operation: Operation, payload: Optional[Mapping[str, Any]] = None) -> dict:
    """Send one request through the bridge and log a refusal."""
    result = bridge.handle(operation, payload)
    if not result.get("success"):
        logger.warning("%s refused: %s", operation.value, result.get("error"))
    return result


def on_start() -> None:
    """Called when recording should start."""
    dispatch(Operation.START_CAPTURE)


def on_stop() -> None:
    dispatch(Operation.STOP_CAPTURE)


def on_status(status: SessionStatus) -> None:
    """Terminal status for the finished session."""
    if status.state == SessionState.SUCCEEDED:
        if status.paste_failed:
            logger.warning("Could not paste; transcript: %s", status.text[:50])
        else:
            logger.info("Pasted%s: %s", " (corrected)" if status.corrected else "", status.text[:50])
    else:
        logger.error("Failed: %s", status.message)


def shutdown() -> None:
    """Clean shutdown."""
    if _keyboard_listener:
        _keyboard_listener.stop()

    controller.shutdown()
    metrics.shutdown()
    logger.info("Goodbye!")


def _signal_handler(signum, frame):
    """Handle SIGINT/SIGTERM."""
    _stopped.set()


if __name__ == "__main__":
    main()
