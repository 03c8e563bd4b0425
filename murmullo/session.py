"""
Session management for the capture-to-paste lifecycle.

The RecordingController owns the one live RecordingSession. Capture runs on
the caller's thread; everything after stop() runs on a per-session worker
thread so the hotkey listener never blocks on the network.

Stages run strictly in order: repair -> transcribe -> correct -> paste -> history.
"""

import logging
import threading
import time
from typing import Callable, Iterable, Optional
from uuid import uuid4

from .audio import AudioEngine
from .correct import CorrectionGateway
from .errors import (
    AlreadyActive, DeviceUnavailable, MurmulloError, PasteFailed, SessionCancelled,
    TranscriptionFailed,
)
from .history import HistoryStore
from .metrics import (
    MetricsWriter, log_capture_stopped, log_correction, log_paste, log_repair,
    log_session_complete, log_session_start, log_transcription,
)
from .output import ClipboardPasteOrchestrator
from .repair import AudioFormatGuard
from .retry import backoff_delay_ms
from .transcribe import TranscriptionGateway
from .types import (
    ACTIVE_STATES, ConfigSnapshot, HistoryRecord, RecordingSession, SessionState,
    SessionStatus,
)

logger = logging.getLogger(__name__)


TERMINAL_STATES = (SessionState.SUCCEEDED, SessionState.FAILED)
PROCESSING_SLACK_SECONDS = 5.0
UNEXPECTED_MESSAGE = "Unexpected error, please retry."
TIMEOUT_MESSAGE = "Processing took too long, please retry."


def build_guard(snapshot: ConfigSnapshot) -> AudioFormatGuard:
    return AudioFormatGuard(ffmpeg_path=snapshot.ffmpeg_path, timeout=snapshot.repair_timeout)


def build_transcriber(snapshot: ConfigSnapshot) -> TranscriptionGateway:
    return TranscriptionGateway(
        snapshot.openai_api_key,
        model=snapshot.transcription_model,
        language=snapshot.language,
        timeout=snapshot.request_timeout,
        max_attempts=snapshot.max_attempts,
    )


def build_corrector(snapshot: ConfigSnapshot) -> Optional[CorrectionGateway]:
    """None in raw mode, where the transcript is pasted as-is."""
    if snapshot.processing_mode != "smart":
        return None
    if snapshot.reasoning_provider == "anthropic":
        api_key, model = snapshot.anthropic_api_key, snapshot.anthropic_model
    else:
        api_key, model = snapshot.openai_api_key, snapshot.openai_model
    return CorrectionGateway(
        snapshot.reasoning_provider,
        api_key,
        model,
        timeout=snapshot.request_timeout,
        max_attempts=snapshot.max_attempts,
    )


def processing_deadline(snapshot: ConfigSnapshot) -> float:
    """Upper bound in seconds for Processing, from the per-stage timeouts."""
    backoff = sum(backoff_delay_ms(i) for i in range(max(snapshot.max_attempts - 1, 0))) / 1000.0
    per_gateway = snapshot.max_attempts * snapshot.request_timeout + backoff
    return (
        snapshot.repair_timeout
        + 2 * per_gateway
        + snapshot.paste_timeout
        + PROCESSING_SLACK_SECONDS
    )


class RecordingController:
    """
    State machine for Idle -> Capturing -> Processing -> Succeeded|Failed -> Idle.

    Only one session may be Capturing or Processing. Results from a
    superseded session are dropped by comparing session ids, and a watchdog
    forces Failed if a pipeline outlives its deadline.

    Usage:
        controller = RecordingController(config.snapshot, engine, orchestrator)
        controller.start()
        # ... user speaks ...
        controller.stop()
    """

    def __init__(
        self,
        config_snapshot_fn: Callable[[], ConfigSnapshot],
        audio_engine: AudioEngine,
        paste_orchestrator: ClipboardPasteOrchestrator,
        history: Optional[HistoryStore] = None,
        metrics: Optional[MetricsWriter] = None,
        guard_factory: Callable[[ConfigSnapshot], AudioFormatGuard] = build_guard,
        transcriber_factory: Callable[[ConfigSnapshot], TranscriptionGateway] = build_transcriber,
        corrector_factory: Callable[[ConfigSnapshot], Optional[CorrectionGateway]] = build_corrector,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
        on_status: Optional[Callable[[SessionStatus], None]] = None,
    ):
        self.config_snapshot_fn = config_snapshot_fn
        self.audio = audio_engine
        self.paste = paste_orchestrator
        self.history = history
        self.metrics = metrics
        self.guard_factory = guard_factory
        self.transcriber_factory = transcriber_factory
        self.corrector_factory = corrector_factory
        self.on_state_change = on_state_change
        self.on_status = on_status

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._session: Optional[RecordingSession] = None
        self._snapshot: Optional[ConfigSnapshot] = None
        self._cancel = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._reset_timer: Optional[threading.Timer] = None
        self._watchdog: Optional[threading.Timer] = None
        self._last_status: Optional[SessionStatus] = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._session.state if self._session else SessionState.IDLE

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._session.id if self._session else None

    @property
    def last_status(self) -> Optional[SessionStatus]:
        with self._lock:
            return self._last_status

    def is_busy(self) -> bool:
        return self.state in ACTIVE_STATES

    def start(self, force: bool = False) -> str:
        """
        Open the microphone for a new session.

        Only allowed from Idle. Any other state, including the Succeeded/Failed
        dwell, raises AlreadyActive unless force is set. With force the old
        session is cancelled and its device released first.

        Returns:
            The new session id. If the device cannot be opened the session
            is already Failed when this returns.
        """
        snapshot = self.config_snapshot_fn()
        failure: Optional[DeviceUnavailable] = None

        with self._lock:
            current = self._session
            if current is not None and current.state != SessionState.IDLE:
                if not force:
                    raise AlreadyActive()
                logger.warning("[Session] Superseding %s in %s", current.id[:8], current.state.value)
                self._cancel.set()

            self._cancel_timers()
            # Never let two sessions race on the device
            self.audio.shutdown()

            session = RecordingSession(id=uuid4().hex)
            self._session = session
            self._snapshot = snapshot
            self._cancel = threading.Event()
            self._last_status = None
            self._set_state(session, SessionState.CAPTURING)
            log_session_start(self.metrics, session.id)

            try:
                self.audio.start(timeout=snapshot.device_timeout)
            except DeviceUnavailable as e:
                failure = e

        if failure is not None:
            logger.error("[Session] %s", failure)
            self._finish(SessionStatus(session.id, SessionState.FAILED, message=failure.user_message))
        else:
            logger.info("[Session] %s capturing", session.id[:8])
        return session.id

    def stop(self) -> Optional[str]:
        """
        Release the microphone and hand the recording to the pipeline.

        No-op (returns None) unless Capturing.
        """
        with self._lock:
            session = self._session
            if session is None or session.state != SessionState.CAPTURING:
                return None

            try:
                raw = self.audio.stop()
            except Exception as e:
                logger.error("[Session] Could not collect recording: %s", e)
                raw = b""

            session.raw_audio = raw
            session.stopped_at = time.time()
            log_capture_stopped(self.metrics, session.id, len(raw),
                                (session.stopped_at - session.created_at) * 1000)

            self._set_state(session, SessionState.PROCESSING)
            snapshot = self._snapshot
            self._start_watchdog(session.id, processing_deadline(snapshot))

            worker = threading.Thread(
                target=self._run,
                args=(session, snapshot, self._cancel),
                name=f"pipeline-{session.id[:8]}",
                daemon=True,
            )
            self._worker = worker
            worker.start()

        logger.info("[Session] %s processing %d bytes", session.id[:8], len(raw))
        return session.id

    def cancel(self, reason: str = "emergency reset") -> None:
        """Abandon whatever is running and go straight back to Idle."""
        with self._lock:
            session = self._session
            self._cancel.set()
            self._cancel_timers()
            self.audio.shutdown()
            if session is None:
                return
            logger.warning("[Session] %s cancelled: %s", session.id[:8], reason)
            self._set_state(session, SessionState.IDLE)
            self._session = None

    def shutdown(self, timeout: float = 1.0) -> None:
        """Best-effort cleanup at process exit."""
        self.cancel("shutdown")
        worker = self._worker
        if worker is not None and worker.is_alive():
            worker.join(timeout)

    def wait_for(self, states: Iterable[SessionState], timeout: Optional[float] = None) -> bool:
        """Block until the controller reaches one of states."""
        wanted = tuple(states)
        with self._changed:
            return self._changed.wait_for(lambda: self.state in wanted, timeout)

    def _run(self, session: RecordingSession, snapshot: ConfigSnapshot,
             cancel: threading.Event) -> None:
        try:
            status = self._run_pipeline(session, snapshot, cancel)
        except SessionCancelled:
            logger.info("[Session] %s superseded, discarding pipeline", session.id[:8])
            return
        except MurmulloError as e:
            logger.error("[Session] %s failed: %s", session.id[:8], e)
            status = SessionStatus(session.id, SessionState.FAILED, message=e.user_message)
        except Exception:
            logger.exception("[Session] %s unexpected pipeline error", session.id[:8])
            status = SessionStatus(session.id, SessionState.FAILED, message=UNEXPECTED_MESSAGE)

        self._finish(status)

    def _run_pipeline(self, session: RecordingSession, snapshot: ConfigSnapshot,
                      cancel: threading.Event) -> SessionStatus:
        raw = session.raw_audio
        if not raw:
            raise TranscriptionFailed("No audio captured",
                                      user_message="No audio captured. Please try again.")

        # 1. Validate or repair the container
        buffer = self.guard_factory(snapshot).validate_or_repair(raw, session.id)
        log_repair(self.metrics, session.id, buffer.format.value, buffer.repaired)
        _check_cancel(cancel)

        # 2. Transcribe (fatal on failure)
        transcriber = self.transcriber_factory(snapshot)
        try:
            transcription = transcriber.transcribe(buffer, cancel_event=cancel)
        finally:
            transcriber.close()
        log_transcription(self.metrics, session.id, transcription.provider,
                          transcription.latency_ms, transcription.text)
        if not transcription.text:
            raise TranscriptionFailed("Empty transcript", user_message="No speech detected.")

        # 3. Correct (best effort)
        text = transcription.text
        corrected = False
        method = "none"
        corrector = self.corrector_factory(snapshot)
        if corrector is not None:
            try:
                correction = corrector.correct(text, cancel_event=cancel)
            finally:
                corrector.close()
            log_correction(self.metrics, session.id, correction.provider,
                           correction.latency_ms, correction.is_processed)
            text = correction.text
            corrected = correction.is_processed
            if corrected:
                method = correction.provider
        _check_cancel(cancel)

        # 4. Paste, clipboard restored on every path
        paste = self.paste.paste_and_restore(text)
        log_paste(self.metrics, session.id, paste.success, paste.clipboard_restored)
        _check_cancel(cancel)

        # 5. History
        self._save_history(HistoryRecord(
            original_text=transcription.text,
            processed_text=text if corrected else None,
            is_processed=corrected,
            processing_method=method,
        ))

        return SessionStatus(
            session.id,
            SessionState.SUCCEEDED,
            text=text,
            message="" if paste.success else PasteFailed.default_message,
            corrected=corrected,
            paste_failed=not paste.success,
        )

    def _save_history(self, record: HistoryRecord) -> None:
        if self.history is None:
            return
        try:
            self.history.save(record)
        except OSError as e:
            logger.error("[Session] Could not save history: %s", e)

    def _finish(self, status: SessionStatus) -> bool:
        """Move the live session to its terminal state. Stale results are ignored."""
        with self._lock:
            session = self._session
            if (session is None or session.id != status.session_id
                    or session.state not in ACTIVE_STATES):
                logger.info("[Session] Ignoring stale result for %s", status.session_id[:8])
                return False

            self._cancel_timers()
            session.raw_audio = None
            self._last_status = status
            self._set_state(session, status.state)

            snapshot = self._snapshot
            dwell = snapshot.success_dwell if status.state == SessionState.SUCCEEDED else snapshot.failure_dwell
            self._reset_timer = threading.Timer(dwell, self._auto_reset, args=(session.id,))
            self._reset_timer.daemon = True
            self._reset_timer.start()

        log_session_complete(self.metrics, session.id, status.state.value,
                             (time.time() - session.created_at) * 1000, status.message)
        logger.info("[Session] %s %s %s", session.id[:8], status.state.value, status.message)
        if self.on_status:
            try:
                self.on_status(status)
            except Exception:
                logger.exception("[Session] Status callback failed")
        return True

    def _auto_reset(self, session_id: str) -> None:
        with self._lock:
            session = self._session
            if session is None or session.id != session_id or session.state not in TERMINAL_STATES:
                return
            self._reset_timer = None
            self._set_state(session, SessionState.IDLE)
            self._session = None

    def _processing_timeout(self, session_id: str) -> None:
        with self._lock:
            session = self._session
            if session is None or session.id != session_id or session.state != SessionState.PROCESSING:
                return
            logger.error("[Session] %s exceeded its processing deadline", session_id[:8])
            # The worker keeps running until its own timeouts fire; its result is ignored
            self._cancel.set()
        self._finish(SessionStatus(session_id, SessionState.FAILED, message=TIMEOUT_MESSAGE))

    def _start_watchdog(self, session_id: str, deadline: float) -> None:
        self._watchdog = threading.Timer(deadline, self._processing_timeout, args=(session_id,))
        self._watchdog.daemon = True
        self._watchdog.start()

    def _cancel_timers(self) -> None:
        for timer in (self._reset_timer, self._watchdog):
            if timer is not None:
                timer.cancel()
        self._reset_timer = None
        self._watchdog = None

    def _set_state(self, session: RecordingSession, state: SessionState) -> None:
        """Must hold lock."""
        session.state = state
        self._changed.notify_all()
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception:
                logger.exception("[Session] State callback failed")


def _check_cancel(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise SessionCancelled()
