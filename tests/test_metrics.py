import json
from unittest.mock import Mock

from murmullo.metrics import MetricsWriter, log_correction, log_session_complete


def read_events(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_events_written_on_shutdown(tmp_path):
    path = tmp_path / "metrics" / "metrics.jsonl"
    writer = MetricsWriter(path)

    writer.log("transcription", session_id="abc", latency_ms=234)
    writer.log("paste", session_id="abc", success=True)
    writer.shutdown()

    events = read_events(path)
    assert [e["event"] for e in events] == ["transcription", "paste"]
    assert events[0]["latency_ms"] == 234
    assert "ts" in events[0]


def test_helpers_accept_no_writer():
    log_correction(None, "abc", "anthropic", 10, False)
    log_session_complete(None, "abc", "failed", 12.0)


def test_helpers_truncate_message():
    metrics = Mock()

    log_session_complete(metrics, "abc", "failed", 12.0, message="x" * 500)

    assert len(metrics.log.call_args.kwargs["message"]) == 200
