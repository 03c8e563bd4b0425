"""
Per-session event log in JSONL, written off the caller's thread.

Usage:
    metrics = MetricsWriter(config.metrics_file)
    log_transcription(metrics, session_id, "openai", 234, text)
    metrics.shutdown()  # drains everything queued so far
"""

import json
import logging
import threading
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Any, List, Optional, Tuple

logger = logging.getLogger(__name__)


_STOP = object()


class MetricsWriter:
    """
    Queue-backed appender shared by every pipeline thread.

    log() never touches the disk; a single writer thread appends whatever
    has accumulated since its last wakeup in one open/write.
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = metrics_file
        self._events: Queue = Queue()
        self._writer = threading.Thread(target=self._run, name="metrics-writer", daemon=True)
        self._writer.start()

    def log(self, event: str, **fields: Any) -> None:
        self._events.put({"ts": time.time(), "event": event, **fields})

    def shutdown(self, timeout: float = 2.0) -> None:
        """Write out everything queued before this call, then stop."""
        self._events.put(_STOP)
        self._writer.join(timeout)

    def _run(self) -> None:
        stopping = False
        while not stopping:
            batch, stopping = self._next_batch(self._events.get())
            self._append(batch)

    def _next_batch(self, first: Any) -> Tuple[List[dict], bool]:
        if first is _STOP:
            return [], True
        batch = [first]
        while True:
            try:
                item = self._events.get_nowait()
            except Empty:
                return batch, False
            if item is _STOP:
                return batch, True
            batch.append(item)

    def _append(self, batch: List[dict]) -> None:
        if not batch:
            return
        payload = "".join(json.dumps(e, ensure_ascii=False, default=str) + "\n" for e in batch)
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.metrics_file, "a", encoding="utf-8") as f:
                f.write(payload)
        except OSError as e:
            logger.error("[Metrics] Dropped %d events: %s", len(batch), e)


# Event helpers. Each one is a no-op when metrics is None.

def log_session_start(metrics: Optional[MetricsWriter], session_id: str) -> None:
    if metrics:
        metrics.log("session_start", session_id=session_id)


def log_capture_stopped(metrics: Optional[MetricsWriter], session_id: str,
                        audio_bytes: int, duration_ms: float) -> None:
    if metrics:
        metrics.log("capture_stopped", session_id=session_id,
                    audio_bytes=audio_bytes, duration_ms=round(duration_ms, 1))


def log_repair(metrics: Optional[MetricsWriter], session_id: str,
               audio_format: str, repaired: bool) -> None:
    if metrics:
        metrics.log("repair", session_id=session_id, format=audio_format, repaired=repaired)


def log_transcription(metrics: Optional[MetricsWriter], session_id: str,
                      provider: str, latency_ms: int, text: str) -> None:
    if metrics:
        metrics.log("transcription", session_id=session_id, provider=provider,
                    latency_ms=latency_ms, chars=len(text), text=text[:200])


def log_correction(metrics: Optional[MetricsWriter], session_id: str,
                   provider: str, latency_ms: int, is_processed: bool) -> None:
    if metrics:
        metrics.log("correction", session_id=session_id, provider=provider,
                    latency_ms=latency_ms, is_processed=is_processed)


def log_paste(metrics: Optional[MetricsWriter], session_id: str,
              success: bool, clipboard_restored: bool) -> None:
    if metrics:
        metrics.log("paste", session_id=session_id, success=success,
                    clipboard_restored=clipboard_restored)


def log_session_complete(metrics: Optional[MetricsWriter], session_id: str, state: str,
                         total_duration_ms: float, message: str = "") -> None:
    if metrics:
        metrics.log("session_complete", session_id=session_id, state=state,
                    total_duration_ms=round(total_duration_ms, 1), message=message[:200])
